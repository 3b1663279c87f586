"""Core data types shared by the stream pipeline, the plugin registry and the loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


TOOL_CALLS_FINISH_REASONS = frozenset({"tool-calls", "tool_calls"})


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    name: str | None = None
    parts: list[dict] | None = None
    tool_invocations: list[dict] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape expected by the chat endpoint."""
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            d["name"] = self.name
        if self.parts is not None:
            d["parts"] = self.parts
        if self.tool_invocations is not None:
            d["toolInvocations"] = self.tool_invocations
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            name=data.get("name"),
            parts=data.get("parts"),
            tool_invocations=data.get("toolInvocations"),
        )


@dataclass
class ToolCall:
    """
    A tool invocation announced by the agent.

    ``call_id`` is unique per call and stable across rounds.  The wire
    payload uses ``toolCallId``/``toolName``/``args``; older payloads use
    ``id``/``name``/``arguments`` and both spellings are accepted.
    """

    call_id: str
    name: str
    arguments: dict = field(default_factory=dict)

    # Deprecated aliases kept for older consumers.

    @property
    def id(self) -> str:
        return self.call_id

    @property
    def tool_call_id(self) -> str:
        return self.call_id

    @property
    def tool_name(self) -> str:
        return self.name

    @property
    def args(self) -> dict:
        return self.arguments

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ToolCall:
        call_id = payload.get("toolCallId") or payload.get("id") or ""
        name = payload.get("toolName") or payload.get("name") or ""
        args = payload.get("args")
        if args is None:
            args = payload.get("arguments")
        if args is None:
            args = payload.get("input")
        return cls(call_id=str(call_id), name=str(name), arguments=args or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.call_id,
            "toolName": self.name,
            "args": self.arguments,
            "id": self.call_id,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class ToolResult:
    """The output of one tool call, produced by the server or by a client callback."""

    call_id: str
    name: str | None
    output: Any
    is_error: bool = False

    @property
    def id(self) -> str:
        return self.call_id

    @property
    def tool_call_id(self) -> str:
        return self.call_id

    @property
    def tool_name(self) -> str | None:
        return self.name

    @property
    def result(self) -> Any:
        return self.output

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ToolResult:
        call_id = payload.get("toolCallId") or payload.get("id") or ""
        name = payload.get("toolName") or payload.get("name")
        output = payload["result"] if "result" in payload else payload.get("output")
        return cls(call_id=str(call_id), name=name, output=output)

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolCallId": self.call_id,
            "toolName": self.name,
            "result": self.output,
            "id": self.call_id,
            "name": self.name,
        }


@dataclass
class FinishInfo:
    """Normalized completion marker of one round."""

    reason: str = "stop"
    usage: dict | None = None
    is_continued: bool | None = None

    @property
    def requests_tools(self) -> bool:
        return self.reason in TOOL_CALLS_FINISH_REASONS


@dataclass
class AggregatedResponse:
    """
    Everything observed during one top-level call, folded into one object.

    Built incrementally by the ``ResponseAggregator`` and finalized when the
    orchestration loop terminates.
    """

    content: str = ""
    message_id: str | None = None
    usage: dict | None = None
    finish_reason: str | None = None
    path_info: dict | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    reasoning: dict | None = None
    intent_context: dict | None = None
    dev_tools_info: dict | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "messageId": self.message_id,
            "usage": self.usage,
            "finishReason": self.finish_reason,
            "pathInfo": self.path_info,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls],
            "toolResults": [tr.to_dict() for tr in self.tool_results],
            "reasoning": self.reasoning,
            "intentContext": self.intent_context,
            "devToolsInfo": self.dev_tools_info,
        }


class ToolErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
