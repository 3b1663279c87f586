"""Abstract base class for chat transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator


class Transport(ABC):
    """
    A transport delivers one request body to the chat endpoint and yields the
    response body as raw byte chunks, split wherever the network splits them.

    Implementations raise ``TransportError`` for non-success responses and
    connection failures, and ``StreamTimeoutError`` when the request times out.
    No retry happens at this layer.
    """

    @abstractmethod
    async def stream(self, request: dict) -> AsyncIterator[bytes]:
        """
        POST *request* and yield the response body as raw byte chunks.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield b""  # type: ignore[misc]

    async def aclose(self) -> None:
        """Release any held resources."""
        return None
