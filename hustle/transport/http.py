"""
HTTP transport for the chat endpoint.

Dependencies: ``httpx`` (async HTTP client).  The request body is POSTed as
JSON and the response body is yielded chunk by chunk, undecoded.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from hustle.errors import StreamTimeoutError, TransportError
from hustle.transport.base import Transport

logger = logging.getLogger(__name__)


class HttpTransport(Transport):
    """
    Single-attempt streaming POST.

    Parameters
    ----------
    url:
        Full URL of the chat endpoint, e.g. ``"https://agenthustle.ai/api/chat"``.
    timeout:
        HTTP timeout in seconds.  Exceeding it raises ``StreamTimeoutError``.
    user_agent:
        Value of the ``User-Agent`` header.
    headers:
        Extra headers sent with every request.
    client:
        An existing ``httpx.AsyncClient`` to reuse.  The caller keeps ownership,
        so ``aclose`` leaves it open.  When omitted a client is created per
        request and closed afterwards.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 180.0,
        user_agent: str = "HustleIncognito-SDK-py",
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._user_agent = user_agent
        self._extra_headers = dict(headers or {})
        self._client = client

    @property
    def url(self) -> str:
        return self._url

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "x-mcp-mode": "true",
        }
        headers.update(self._extra_headers)
        return headers

    async def stream(self, request: dict) -> AsyncIterator[bytes]:
        api_key = str(request.get("apiKey") or "")
        logger.debug(
            "REQUEST: url=%s messages=%d tools=%d api_key=%s...",
            self._url,
            len(request.get("messages") or []),
            len(request.get("clientTools") or []),
            api_key[:8] if api_key else "(none)",
        )

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream(
                "POST", self._url, json=request, headers=self._build_headers()
            ) as response:
                if not response.is_success:
                    # Read the body so the connection is released.
                    await response.aread()
                    logger.debug("HTTP error: %s %s", response.status_code, response.reason_phrase)
                    raise TransportError(
                        f"HTTP error: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                logger.debug("Response status: %s", response.status_code)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TimeoutException as exc:
            raise StreamTimeoutError() from exc
        except httpx.TransportError as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc
        finally:
            if owns_client:
                await client.aclose()

    async def aclose(self) -> None:
        # Injected clients belong to the caller and per-request clients are
        # closed in ``stream``.
        return None
