"""
High-level client for the agent chat service.

Wires config, transport, plugin registry and lifecycle events into the
orchestration loop.  Typical use::

    async with HustleClient.from_config("hustle.yaml") as client:
        response = await client.chat("What's the SOL price?", vault_id="v1")
        print(response.content)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from hustle.config import ClientConfig, load_config
from hustle.events import LIFECYCLE_EVENTS, SECURITY_EVENTS, ClientEvent, EventBus
from hustle.orchestrator.core import ChatStream, Orchestrator, ToolCallHandler
from hustle.plugins.base import PluginBundle
from hustle.plugins.registry import PluginRegistry
from hustle.plugins.security import VerificationOutcome
from hustle.request import DEFAULT_VAULT_ID, RequestBuilder
from hustle.stream.decoder import decode_frames
from hustle.stream.frames import RawFrame
from hustle.transport.base import Transport
from hustle.transport.http import HttpTransport
from hustle.types import AggregatedResponse, ChatMessage

logger = logging.getLogger(__name__)


def _normalize_messages(messages: str | list[ChatMessage | dict]) -> list[ChatMessage | dict]:
    if isinstance(messages, str):
        return [ChatMessage(role="user", content=messages)]
    return list(messages)


class HustleClient:
    """
    Parameters
    ----------
    api_key : str
        API key sent in each request body.  Defaults to the environment
        variable named by ``config.api.api_key_env``.
    config : ClientConfig
        Loaded configuration.  Defaults to ``ClientConfig()``.
    transport : Transport
        Byte transport.  Defaults to an ``HttpTransport`` for
        ``config.api.chat_url``.
    registry : PluginRegistry
        Plugin registry.  Defaults to a fresh registry using
        ``config.security``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        config: ClientConfig | None = None,
        transport: Transport | None = None,
        registry: PluginRegistry | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.api_key = api_key or self.config.api.resolve_api_key()
        if not self.api_key:
            raise ValueError("API key is required")

        if self.config.debug:
            logging.getLogger("hustle").setLevel(logging.DEBUG)

        self.transport = transport or HttpTransport(
            url=self.config.api.chat_url,
            timeout=self.config.api.timeout_seconds,
            user_agent=self.config.api.user_agent,
        )
        self.plugins = registry or PluginRegistry(self.config.security)
        self.events = EventBus()

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None = None,
        *,
        profile: str | None = None,
        overrides: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> HustleClient:
        cfg = load_config(config_path, profile=profile, overrides=overrides)
        return cls(config=cfg, **kwargs)

    async def __aenter__(self) -> HustleClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: str | list[ChatMessage | dict],
        *,
        vault_id: str | None = None,
        max_tool_rounds: int | None = None,
        on_tool_call: ToolCallHandler | None = None,
        **request_options: Any,
    ) -> AggregatedResponse:
        """Buffered mode: run the full tool loop and return the final response."""
        orchestrator = self._orchestrator(vault_id, max_tool_rounds, on_tool_call, request_options)
        return await orchestrator.run(_normalize_messages(messages))

    def chat_stream(
        self,
        messages: str | list[ChatMessage | dict],
        *,
        vault_id: str | None = None,
        max_tool_rounds: int | None = None,
        on_tool_call: ToolCallHandler | None = None,
        **request_options: Any,
    ) -> ChatStream:
        """
        Streaming mode: iterate the returned ``ChatStream`` for events and
        await its ``response`` for the final aggregate.
        """
        orchestrator = self._orchestrator(vault_id, max_tool_rounds, on_tool_call, request_options)
        return orchestrator.stream(_normalize_messages(messages))

    async def raw_stream(
        self,
        messages: str | list[ChatMessage | dict],
        *,
        vault_id: str | None = None,
        **request_options: Any,
    ) -> AsyncIterator[RawFrame]:
        """Single request, no tool loop: yield decoded frames as they arrive."""
        builder = self._request_builder(vault_id, request_options)
        request = builder(_normalize_messages(messages))
        async for frame in decode_frames(self.transport.stream(request)):
            yield frame

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    async def use(self, bundle: PluginBundle) -> VerificationOutcome:
        """Register a plugin bundle; see ``PluginRegistry.register``."""
        return await self.plugins.register(bundle)

    async def unuse(self, name: str) -> None:
        await self.plugins.unregister(name)

    async def load_plugins(self) -> int:
        """Register bundles discovered through entry points, per ``config.plugins``."""
        cfg = self.config.plugins
        return await self.plugins.load_entry_points(
            enabled=cfg.enabled,
            group=cfg.group,
            allow_distributions=set(cfg.allow_distributions) if cfg.allow_distributions else None,
            allow_plugins=set(cfg.allow_plugins) if cfg.allow_plugins else None,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event_type: str, listener: Callable[[ClientEvent], Any]) -> Callable[[], None]:
        """Subscribe to a lifecycle or security event; returns an unsubscribe callable."""
        if event_type in SECURITY_EVENTS:
            return self.plugins.on_security_event(listener, event_type)
        if event_type not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unknown event type: {event_type}")
        return self.events.subscribe(event_type, listener)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _request_builder(self, vault_id: str | None, options: dict[str, Any]) -> RequestBuilder:
        options = dict(options)
        options.setdefault("model", self.config.api.model)
        return RequestBuilder(
            api_key=options.pop("api_key", None) or self.api_key,
            vault_id=vault_id or self.config.api.vault_id or DEFAULT_VAULT_ID,
            **options,
        )

    def _orchestrator(
        self,
        vault_id: str | None,
        max_tool_rounds: int | None,
        on_tool_call: ToolCallHandler | None,
        request_options: dict[str, Any],
    ) -> Orchestrator:
        stream_cfg = self.config.stream
        return Orchestrator(
            transport=self.transport,
            registry=self.plugins,
            build_request=self._request_builder(vault_id, request_options),
            events=self.events,
            max_tool_rounds=stream_cfg.max_tool_rounds if max_tool_rounds is None else max_tool_rounds,
            tool_timeout=stream_cfg.tool_timeout_seconds,
            validate_arguments=stream_cfg.validate_tool_arguments,
            on_tool_call=on_tool_call,
        )
