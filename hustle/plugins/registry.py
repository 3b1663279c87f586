from __future__ import annotations

import dataclasses
import inspect
import logging
from importlib.metadata import entry_points
from typing import Any, Callable

from hustle.config import SecurityConfig
from hustle.errors import (
    PluginConflictError,
    PluginNotFoundError,
    PluginValidationError,
    PluginVerificationError,
)
from hustle.events import (
    EVENT_PLUGIN_VERIFICATION_FAILED,
    EVENT_PLUGIN_VERIFICATION_SKIPPED,
    EVENT_PLUGIN_VERIFICATION_SUCCESS,
    SECURITY_EVENTS,
    ClientEvent,
    EventBus,
    verification_event,
)
from hustle.plugins.base import PluginBundle, ToolCallback, ToolSchema
from hustle.plugins.security import (
    VerificationOutcome,
    VerificationReason,
    serialize_plugin_code,
    verify_plugin_code,
)
from hustle.plugins.validation import validate_bundle
from hustle.types import ToolCall

logger = logging.getLogger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PluginRegistry:
    """
    Registered plugin bundles and the tool index built from them.

    Bundles are kept in registration order (hooks run in that order).  The
    tool index maps every advertised tool name to its owning bundle and is
    the single place where tool-name uniqueness is enforced.
    """

    def __init__(self, security: SecurityConfig | None = None):
        self._bundles: dict[str, PluginBundle] = {}
        self._tool_owner: dict[str, str] = {}
        self._security = security or SecurityConfig()
        self._events = EventBus()

    # ------------------------------------------------------------------
    # Security configuration and events
    # ------------------------------------------------------------------

    @property
    def security(self) -> SecurityConfig:
        return self._security

    def set_security_config(self, config: SecurityConfig | None = None, **changes: Any) -> None:
        """Replace the security config, or update individual fields of it."""
        base = config if config is not None else self._security
        self._security = dataclasses.replace(base, **changes) if changes else base

    def on_security_event(
        self,
        listener: Callable[[ClientEvent], Any],
        event_type: str | None = None,
    ) -> Callable[[], None]:
        """Subscribe to one ``plugin_verification_*`` event type, or to all of them."""
        if event_type is not None and event_type not in SECURITY_EVENTS:
            raise ValueError(f"Unknown security event type: {event_type}")
        types = [event_type] if event_type else sorted(SECURITY_EVENTS)
        removers = [self._events.subscribe(t, listener) for t in types]

        def unsubscribe() -> None:
            for remove in removers:
                remove()

        return unsubscribe

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, bundle: PluginBundle) -> VerificationOutcome:
        """
        Validate, verify and install *bundle*.

        Raises ``PluginValidationError``, ``PluginConflictError`` or
        ``PluginVerificationError``; nothing is installed when any of them is
        raised.
        """
        validate_bundle(bundle)
        self._check_conflicts(bundle)

        code = serialize_plugin_code(bundle)
        outcome = await verify_plugin_code(bundle.name, code, bundle.signature, self._security)
        logger.debug("Security verification for %r: %s", bundle.name, outcome.reason.value)
        self._emit_outcome(outcome)
        if not outcome.verified:
            raise PluginVerificationError(
                f'Plugin "{bundle.name}" failed security verification: '
                f"{outcome.error or outcome.reason.value}",
                outcome,
            )

        self._install(bundle)
        if bundle.hooks.on_register is not None:
            try:
                await _maybe_await(bundle.hooks.on_register())
            except Exception:
                self._uninstall(bundle)
                raise

        logger.info(
            "Registered plugin %s@%s (tools: %s)",
            bundle.name,
            bundle.version,
            ", ".join(bundle.tool_names()) or "-",
        )
        return outcome

    async def unregister(self, name: str) -> None:
        bundle = self._bundles.get(name)
        if bundle is None:
            raise PluginNotFoundError(f'Plugin "{name}" is not registered')

        if bundle.hooks.on_unregister is not None:
            await _maybe_await(bundle.hooks.on_unregister())

        self._uninstall(bundle)
        logger.info("Unregistered plugin %s", name)

    async def load_entry_points(
        self,
        *,
        enabled: bool,
        group: str = "hustle.plugins",
        allow_distributions: set[str] | None = None,
        allow_plugins: set[str] | None = None,
    ) -> int:
        """Register bundles published under an entry-point group.

        An entry point may reference a ``PluginBundle`` instance or a
        zero-argument callable returning one.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            if allow_plugins and ep.name not in allow_plugins:
                continue
            target = ep.load()
            bundle = target if isinstance(target, PluginBundle) else target()
            if not isinstance(bundle, PluginBundle):
                raise PluginValidationError(
                    f"Entry point {ep.name!r} did not provide a PluginBundle"
                )
            await self.register(bundle)
            loaded += 1
        return loaded

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_plugin(self, name: str) -> bool:
        return name in self._bundles

    def plugin_names(self) -> list[str]:
        return list(self._bundles)

    def get_plugin(self, name: str) -> PluginBundle | None:
        return self._bundles.get(name)

    def tool_schemas(self) -> list[ToolSchema]:
        schemas: list[ToolSchema] = []
        for bundle in self._bundles.values():
            schemas.extend(bundle.tools)
        return schemas

    def get_tool(self, tool_name: str) -> ToolSchema | None:
        owner = self._tool_owner.get(tool_name)
        if owner is None:
            return None
        return self._bundles[owner].get_tool(tool_name)

    def has_executor(self, tool_name: str) -> bool:
        return self.get_executor(tool_name) is not None

    def get_executor(self, tool_name: str) -> ToolCallback | None:
        owner = self._tool_owner.get(tool_name)
        if owner is None:
            return None
        return self._bundles[owner].executors.get(tool_name)

    @property
    def plugin_count(self) -> int:
        return len(self._bundles)

    @property
    def tool_count(self) -> int:
        return len(self._tool_owner)

    # ------------------------------------------------------------------
    # Execution and hooks
    # ------------------------------------------------------------------

    async def execute(self, call: ToolCall) -> Any:
        """Run the callback registered for *call*; exceptions propagate."""
        if not call.name:
            raise ValueError("Tool call missing tool name")
        executor = self.get_executor(call.name)
        if executor is None:
            raise KeyError(f"No executor found for tool: {call.name}")
        logger.debug("Executing tool %s (%s)", call.name, call.call_id)
        return await _maybe_await(executor(call.arguments))

    async def run_before_request(self, request: dict) -> dict:
        current = request
        for bundle in self._bundles.values():
            hook = bundle.hooks.before_request
            if hook is None:
                continue
            result = await _maybe_await(hook(current))
            if result is not None:
                current = result
        return current

    async def run_after_response(self, response: Any) -> None:
        for bundle in self._bundles.values():
            hook = bundle.hooks.after_response
            if hook is not None:
                await _maybe_await(hook(response))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_conflicts(self, bundle: PluginBundle) -> None:
        if bundle.name in self._bundles:
            raise PluginConflictError(f'Plugin "{bundle.name}" is already registered')
        for tool_name in bundle.tool_names():
            owner = self._tool_owner.get(tool_name)
            if owner is not None:
                raise PluginConflictError(
                    f'Plugin "{bundle.name}": Tool "{tool_name}" conflicts with '
                    f'tool from plugin "{owner}"'
                )

    def _install(self, bundle: PluginBundle) -> None:
        self._bundles[bundle.name] = bundle
        for tool_name in bundle.tool_names():
            self._tool_owner[tool_name] = bundle.name

    def _uninstall(self, bundle: PluginBundle) -> None:
        for tool_name in bundle.tool_names():
            if self._tool_owner.get(tool_name) == bundle.name:
                del self._tool_owner[tool_name]
        self._bundles.pop(bundle.name, None)

    def _emit_outcome(self, outcome: VerificationOutcome) -> None:
        if not outcome.verified:
            event_type = EVENT_PLUGIN_VERIFICATION_FAILED
        elif outcome.reason == VerificationReason.SKIP_VERIFICATION:
            event_type = EVENT_PLUGIN_VERIFICATION_SKIPPED
        else:
            event_type = EVENT_PLUGIN_VERIFICATION_SUCCESS
        self._events.emit(verification_event(event_type, outcome))
