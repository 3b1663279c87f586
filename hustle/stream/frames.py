"""
Raw frame model and the standard-format event table.

Two framings share one stream:

  legacy    ``<tag>:<payload>`` where the tag is a single character and the
            payload starts at offset 2 (usually JSON).
  standard  ``data: <json>`` where the JSON object carries a ``type``
            discriminator.  ``data: [DONE]`` terminates the stream.

Standard events are reshaped into the legacy tag vocabulary so everything
downstream of the decoder only ever sees ``RawFrame`` objects with legacy tags.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


@dataclass(frozen=True)
class RawFrame:
    """One framed unit of the wire protocol, in arrival order."""

    tag: str
    payload: Any
    source_line: str


class FrameTag(str, Enum):
    TEXT = "0"
    DATA = "2"
    TOOL_CALL = "9"
    TOOL_RESULT = "a"
    FINISH_MESSAGE = "d"
    FINISH_STEP = "e"
    MESSAGE_ID = "f"
    ERROR = "error"


class StandardEventType(str, Enum):
    TEXT_DELTA = "text-delta"
    START = "start"
    DATA_CUSTOM = "data-custom"
    FINISH = "finish"
    TOOL_CALL = "tool-call"
    TOOL_INPUT_AVAILABLE = "tool-input-available"
    TOOL_RESULT = "tool-result"
    ERROR = "error"
    # Boundary and delta markers; never produce a frame.
    TEXT_START = "text-start"
    TEXT_END = "text-end"
    REASONING_START = "reasoning-start"
    REASONING_DELTA = "reasoning-delta"
    REASONING_END = "reasoning-end"
    START_STEP = "start-step"
    FINISH_STEP = "finish-step"
    TOOL_INPUT_DELTA = "tool-input-delta"


IGNORED_EVENT_TYPES = frozenset(
    {
        StandardEventType.TEXT_START,
        StandardEventType.TEXT_END,
        StandardEventType.REASONING_START,
        StandardEventType.REASONING_DELTA,
        StandardEventType.REASONING_END,
        StandardEventType.START_STEP,
        StandardEventType.FINISH_STEP,
        StandardEventType.TOOL_INPUT_DELTA,
    }
)

DONE_MARKER = "[DONE]"
STANDARD_PREFIX = "data: "
UNKNOWN_SSE_ERROR = "Unknown SSE error"


def _pick(event: dict, renames: dict[str, str]) -> dict:
    """Copy the keys of *renames* that are present in *event*, renaming them."""
    return {dst: event[src] for src, dst in renames.items() if src in event}


def _text_delta(event: dict) -> Any:
    return event.get("delta", "")


def _start(event: dict) -> Any:
    return _pick(event, {"messageId": "messageId"})


def _data_custom(event: dict) -> Any:
    return event.get("data")


def _finish(event: dict) -> Any:
    return _pick(
        event,
        {"finishReason": "finishReason", "usage": "usage", "isContinued": "isContinued"},
    )


def _tool_call(event: dict) -> Any:
    return _pick(event, {"toolCallId": "toolCallId", "toolName": "toolName", "args": "args"})


def _tool_input_available(event: dict) -> Any:
    return _pick(event, {"toolCallId": "toolCallId", "toolName": "toolName", "input": "args"})


def _tool_result(event: dict) -> Any:
    return _pick(event, {"toolCallId": "toolCallId", "toolName": "toolName", "result": "result"})


def _error(event: dict) -> Any:
    message = event.get("message") or event.get("detail") or event.get("error")
    return {"message": message or UNKNOWN_SSE_ERROR}


STANDARD_FRAME_TABLE: dict[StandardEventType, tuple[FrameTag, Callable[[dict], Any]]] = {
    StandardEventType.TEXT_DELTA: (FrameTag.TEXT, _text_delta),
    StandardEventType.START: (FrameTag.MESSAGE_ID, _start),
    StandardEventType.DATA_CUSTOM: (FrameTag.DATA, _data_custom),
    StandardEventType.FINISH: (FrameTag.FINISH_STEP, _finish),
    StandardEventType.TOOL_CALL: (FrameTag.TOOL_CALL, _tool_call),
    StandardEventType.TOOL_INPUT_AVAILABLE: (FrameTag.TOOL_CALL, _tool_input_available),
    StandardEventType.TOOL_RESULT: (FrameTag.TOOL_RESULT, _tool_result),
    StandardEventType.ERROR: (FrameTag.ERROR, _error),
}


def map_standard_event(event: dict, source_line: str) -> RawFrame | None:
    """
    Map one parsed standard-format event to a ``RawFrame``.

    Returns ``None`` for boundary/delta markers and for unrecognized types.
    """
    try:
        event_type = StandardEventType(event.get("type"))
    except ValueError:
        return None

    if event_type in IGNORED_EVENT_TYPES:
        return None

    tag, reshape = STANDARD_FRAME_TABLE[event_type]
    return RawFrame(tag=tag.value, payload=reshape(event), source_line=source_line)
