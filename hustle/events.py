"""
Client lifecycle event model.

Listeners subscribe to lifecycle events (``stream_start``, ``tool_start``,
``max_tools_reached`` ...) independently of the caller's own consumption of
the stream.  Events are created through the factory helpers below and
dispatched through an ``EventBus``.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------


@dataclass
class ClientEvent:
    """
    A single lifecycle notification.

    Attributes
    ----------
    event_type:
        One of the ``EVENT_*`` constants below.
    payload:
        Event-specific data as a JSON-compatible dict.  Keys follow the wire
        spelling of the service (``toolCallId``, ``toolsExecuted`` ...).
    event_id:
        Unique identifier for the event (UUID4).
    timestamp:
        UTC timestamp of event creation.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

EVENT_STREAM_START = "stream_start"
EVENT_STREAM_END = "stream_end"
EVENT_TOOL_START = "tool_start"
EVENT_TOOL_END = "tool_end"
EVENT_MAX_TOOLS_REACHED = "max_tools_reached"
EVENT_TIMEOUT = "timeout"
EVENT_AUTO_RETRY = "auto_retry"
EVENT_TOOL_VALIDATION_ERROR = "tool_validation_error"
EVENT_MISSING_TOOL = "missing_tool"

EVENT_PLUGIN_VERIFICATION_SUCCESS = "plugin_verification_success"
EVENT_PLUGIN_VERIFICATION_FAILED = "plugin_verification_failed"
EVENT_PLUGIN_VERIFICATION_SKIPPED = "plugin_verification_skipped"

LIFECYCLE_EVENTS = frozenset(
    {
        EVENT_STREAM_START,
        EVENT_STREAM_END,
        EVENT_TOOL_START,
        EVENT_TOOL_END,
        EVENT_MAX_TOOLS_REACHED,
        EVENT_TIMEOUT,
        EVENT_AUTO_RETRY,
        EVENT_TOOL_VALIDATION_ERROR,
        EVENT_MISSING_TOOL,
    }
)

SECURITY_EVENTS = frozenset(
    {
        EVENT_PLUGIN_VERIFICATION_SUCCESS,
        EVENT_PLUGIN_VERIFICATION_FAILED,
        EVENT_PLUGIN_VERIFICATION_SKIPPED,
    }
)

TIMEOUT_MESSAGE = "Request timed out"


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def stream_start_event(messages: list[dict[str, Any]]) -> ClientEvent:
    """Create a ``stream_start`` event."""
    return ClientEvent(event_type=EVENT_STREAM_START, payload={"messages": messages})


def stream_end_event(response: dict[str, Any]) -> ClientEvent:
    """Create a ``stream_end`` event carrying the finalized response."""
    return ClientEvent(event_type=EVENT_STREAM_END, payload={"response": response})


def tool_start_event(tool_call_id: str, tool_name: str, args: dict[str, Any]) -> ClientEvent:
    return ClientEvent(
        event_type=EVENT_TOOL_START,
        payload={"toolCallId": tool_call_id, "toolName": tool_name, "args": args},
    )


def tool_end_event(
    tool_call_id: str,
    tool_name: str,
    result: Any,
    duration_ms: int,
    error: str | None = None,
) -> ClientEvent:
    payload: dict[str, Any] = {
        "toolCallId": tool_call_id,
        "toolName": tool_name,
        "result": result,
        "durationMs": duration_ms,
    }
    if error is not None:
        payload["error"] = error
    return ClientEvent(event_type=EVENT_TOOL_END, payload=payload)


def max_tools_reached_event(
    tools_executed: int,
    max_steps: int | None,
    occurrences: int,
    timestamp: str | None = None,
) -> ClientEvent:
    """Create the consolidated ``max_tools_reached`` event."""
    payload: dict[str, Any] = {
        "toolsExecuted": tools_executed,
        "maxSteps": max_steps,
        "occurrences": occurrences,
    }
    if timestamp is not None:
        payload["timestamp"] = timestamp
    return ClientEvent(event_type=EVENT_MAX_TOOLS_REACHED, payload=payload)


def timeout_event(message: str = TIMEOUT_MESSAGE, timestamp: str | None = None) -> ClientEvent:
    payload: dict[str, Any] = {"message": message}
    if timestamp is not None:
        payload["timestamp"] = timestamp
    return ClientEvent(event_type=EVENT_TIMEOUT, payload=payload)


def metadata_event(event_type: str, data: dict[str, Any]) -> ClientEvent:
    """Wrap a metadata envelope (``auto_retry``, ``missing_tool`` ...) as an event."""
    return ClientEvent(event_type=event_type, payload=dict(data))


def verification_event(event_type: str, outcome: Any) -> ClientEvent:
    """Create a ``plugin_verification_*`` event from a ``VerificationOutcome``."""
    return ClientEvent(event_type=event_type, payload=outcome.to_dict())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

Listener = Callable[[ClientEvent], Any]


class EventBus:
    """
    Per-event-type listener sets.

    ``subscribe`` returns a zero-argument callable that removes exactly the
    registration it was returned for, so the same listener may be subscribed
    twice and removed once.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[int, Listener]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, event_type: str, listener: Listener) -> Callable[[], None]:
        token = next(self._tokens)
        self._listeners.setdefault(event_type, {})[token] = listener

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type)
            if listeners is not None:
                listeners.pop(token, None)

        return unsubscribe

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, {}))

    def emit(self, event: ClientEvent) -> None:
        """Deliver *event* to its listeners; a failing listener never stops the others."""
        listeners = self._listeners.get(event.event_type)
        if not listeners:
            return
        for listener in list(listeners.values()):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for %s failed", event.event_type)
