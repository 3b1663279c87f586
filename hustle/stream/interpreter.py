"""
Event interpreter -- maps ``RawFrame`` tags to typed ``StreamEvent`` objects.

The interpreter is stateful only in the text joiner: text that follows tool
activity is separated from earlier text by a newline so tool confirmations and
the next sentence do not run together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from hustle.stream.frames import FrameTag, RawFrame
from hustle.types import FinishInfo, ToolCall, ToolResult

logger = logging.getLogger(__name__)

# Text emitted after tool activity is considered "short" until this many
# characters have accumulated.
SHORT_FRAGMENT_CHARS = 20


class EventKind(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    MESSAGE_ID = "message_id"
    PATH_INFO = "path_info"
    REASONING = "reasoning"
    INTENT_CONTEXT = "intent_context"
    DEV_TOOLS_INFO = "dev_tools_info"
    MAX_TOOLS_REACHED = "max_tools_reached"
    TIMEOUT = "timeout"
    AUTO_RETRY = "auto_retry"
    TOOL_VALIDATION_ERROR = "tool_validation_error"
    MISSING_TOOL = "missing_tool"
    FINISH = "finish"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StreamEvent:
    """
    A typed event derived from one raw frame.

    *value* depends on *kind*: ``str`` for text and message ids, ``ToolCall``,
    ``ToolResult``, ``FinishInfo``, a metadata ``dict``, or the original
    ``RawFrame`` for unknown tags.
    """

    kind: EventKind
    value: Any


# Metadata envelope inner ``type`` -> event kind.
_METADATA_KINDS: dict[str, EventKind] = {
    "path_info": EventKind.PATH_INFO,
    "reasoning": EventKind.REASONING,
    "intent_context": EventKind.INTENT_CONTEXT,
    "dev_tools_info": EventKind.DEV_TOOLS_INFO,
    "token_usage": EventKind.PATH_INFO,
    "timeout_occurred": EventKind.TIMEOUT,
    "auto_retry": EventKind.AUTO_RETRY,
    "tool_validation_error": EventKind.TOOL_VALIDATION_ERROR,
    "missing_tool": EventKind.MISSING_TOOL,
}


class TextJoiner:
    """Inserts newlines between text that is separated by tool activity."""

    def __init__(self) -> None:
        self._emitted = 0
        self._last_char = ""
        self._tool_just_ran = False
        self._since_tool: int | None = None

    def note_tool_activity(self) -> None:
        self._tool_just_ran = True
        self._since_tool = 0

    def join(self, text: str) -> str:
        if not text:
            return text

        prefix = ""
        if self._emitted and not text[0].isspace() and not self._last_char.isspace():
            if self._tool_just_ran:
                prefix = "\n"
            elif self._since_tool and text[0].isupper():
                prefix = "\n"

        self._tool_just_ran = False
        if self._since_tool is not None:
            self._since_tool += len(text)
            if self._since_tool >= SHORT_FRAGMENT_CHARS:
                self._since_tool = None

        self._emitted += len(text)
        self._last_char = text[-1]
        return prefix + text


class EventInterpreter:
    """Converts raw frames into zero or more ``StreamEvent`` objects."""

    def __init__(self) -> None:
        self.joiner = TextJoiner()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def interpret(self, frame: RawFrame) -> list[StreamEvent]:
        tag = frame.tag
        data = frame.payload

        if tag == FrameTag.TEXT:
            text = data if isinstance(data, str) else str(data)
            return [StreamEvent(EventKind.TEXT, self.joiner.join(text))]

        if tag == FrameTag.TOOL_CALL and isinstance(data, dict):
            self.joiner.note_tool_activity()
            return [StreamEvent(EventKind.TOOL_CALL, ToolCall.from_payload(data))]

        if tag == FrameTag.TOOL_RESULT and isinstance(data, dict):
            self.joiner.note_tool_activity()
            return [StreamEvent(EventKind.TOOL_RESULT, ToolResult.from_payload(data))]

        if tag == FrameTag.MESSAGE_ID:
            if isinstance(data, dict) and "messageId" in data:
                return [StreamEvent(EventKind.MESSAGE_ID, data["messageId"])]
            return []

        if tag in (FrameTag.FINISH_STEP, FrameTag.FINISH_MESSAGE):
            return [StreamEvent(EventKind.FINISH, _finish_info(data))]

        if tag == FrameTag.DATA:
            return self._interpret_metadata(data)

        if tag == FrameTag.ERROR:
            return [StreamEvent(EventKind.ERROR, data)]

        logger.debug("Unknown frame tag %r", tag)
        return [StreamEvent(EventKind.UNKNOWN, frame)]

    def note_tool_activity(self) -> None:
        """Record tool activity that did not arrive through the stream."""
        self.joiner.note_tool_activity()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _interpret_metadata(self, data: Any) -> list[StreamEvent]:
        item = data[0] if isinstance(data, list) and data else data
        if not isinstance(item, dict):
            return [StreamEvent(EventKind.PATH_INFO, item)]

        inner_type = item.get("type")
        kind = EventKind.PATH_INFO
        if isinstance(inner_type, str):
            # Unrecognized inner types fall back to path_info.
            kind = _METADATA_KINDS.get(inner_type, EventKind.PATH_INFO)
        events = [StreamEvent(kind, item)]

        if inner_type == "token_usage" and item.get("maxToolsReached") and not item.get("timedOut"):
            events.append(StreamEvent(EventKind.MAX_TOOLS_REACHED, item))
        return events


def _finish_info(data: Any) -> FinishInfo:
    if not isinstance(data, dict):
        return FinishInfo()
    return FinishInfo(
        reason=data.get("finishReason") or "stop",
        usage=data.get("usage"),
        is_continued=data.get("isContinued"),
    )
