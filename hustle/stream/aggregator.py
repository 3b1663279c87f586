"""Folds ``StreamEvent`` objects into one ``AggregatedResponse``."""

from __future__ import annotations

from hustle.stream.interpreter import EventKind, StreamEvent
from hustle.types import AggregatedResponse, FinishInfo, ToolCall, ToolResult


def fold_event(response: AggregatedResponse, event: StreamEvent) -> AggregatedResponse:
    """
    Apply one event to *response* and return it.

    Text is cumulative, tool calls and results are appended in arrival order,
    metadata is last-value-wins.  Events that carry an unexpected value are
    ignored.
    """
    kind = event.kind
    value = event.value

    if kind == EventKind.TEXT and isinstance(value, str):
        response.content += value
    elif kind == EventKind.MESSAGE_ID:
        response.message_id = value
    elif kind == EventKind.TOOL_CALL and isinstance(value, ToolCall):
        response.tool_calls.append(value)
    elif kind == EventKind.TOOL_RESULT and isinstance(value, ToolResult):
        response.tool_results.append(value)
    elif kind == EventKind.FINISH and isinstance(value, FinishInfo):
        response.finish_reason = value.reason
        if value.usage is not None:
            response.usage = value.usage
    elif kind == EventKind.PATH_INFO:
        response.path_info = value
    elif kind == EventKind.REASONING:
        response.reasoning = value
    elif kind == EventKind.INTENT_CONTEXT:
        response.intent_context = value
    elif kind == EventKind.DEV_TOOLS_INFO:
        response.dev_tools_info = value
    return response


class ResponseAggregator:
    """Stateful wrapper around ``fold_event`` for one top-level call."""

    def __init__(self) -> None:
        self.response = AggregatedResponse()

    def feed(self, event: StreamEvent) -> None:
        fold_event(self.response, event)

    def reset(self) -> None:
        self.response = AggregatedResponse()
