"""
Orchestrator core -- the multi-round tool loop.

One top-level call runs:
1. Build a request from the message history (plus advertised client tools)
2. Let plugin ``before_request`` hooks rewrite it
3. Stream the response through decoder -> interpreter -> aggregator
4. Collect pending client tool calls; if the round finished with a
   tool-invocation reason, execute them sequentially
5. Append a follow-up assistant message with every call's result and loop
6. Stop on a non-tool finish reason or when the round cap is reached
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Callable

from hustle.errors import is_timeout_error
from hustle.events import (
    EVENT_AUTO_RETRY,
    EVENT_MISSING_TOOL,
    EVENT_TOOL_VALIDATION_ERROR,
    TIMEOUT_MESSAGE,
    ClientEvent,
    EventBus,
    max_tools_reached_event,
    metadata_event,
    stream_end_event,
    stream_start_event,
    timeout_event,
    tool_end_event,
    tool_start_event,
)
from hustle.plugins.registry import PluginRegistry
from hustle.plugins.validation import ArgumentValidator
from hustle.stream.aggregator import ResponseAggregator
from hustle.stream.decoder import decode_frames
from hustle.stream.interpreter import EventInterpreter, EventKind, StreamEvent
from hustle.transport.base import Transport
from hustle.types import (
    TOOL_CALLS_FINISH_REASONS,
    AggregatedResponse,
    ChatMessage,
    ToolCall,
    ToolErrorCode,
    ToolResult,
)

logger = logging.getLogger(__name__)

RequestFactory = Callable[[list[dict]], dict]
ToolCallHandler = Callable[[ToolCall], Any]

_METADATA_EVENT_TYPES: dict[EventKind, str] = {
    EventKind.AUTO_RETRY: EVENT_AUTO_RETRY,
    EventKind.TOOL_VALIDATION_ERROR: EVENT_TOOL_VALIDATION_ERROR,
    EventKind.MISSING_TOOL: EVENT_MISSING_TOOL,
}


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _message_dict(message: ChatMessage | dict) -> dict:
    if isinstance(message, ChatMessage):
        return message.to_dict()
    return dict(message)


# ---------------------------------------------------------------------------
# Loop state
# ---------------------------------------------------------------------------


@dataclass
class MaxToolsTally:
    """Accumulated ``max_tools_reached`` reports across rounds."""

    occurrences: int = 0
    tools_executed: int = 0
    max_steps: int | None = None
    timestamp: str | None = None

    def add(self, data: Any) -> None:
        self.occurrences += 1
        if not isinstance(data, dict):
            return
        executed = data.get("toolsExecuted")
        if isinstance(executed, int):
            self.tools_executed += executed
        if data.get("maxSteps") is not None:
            self.max_steps = data["maxSteps"]
        if data.get("timestamp") is not None:
            self.timestamp = data["timestamp"]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "toolsExecuted": self.tools_executed,
            "maxSteps": self.max_steps,
            "occurrences": self.occurrences,
        }
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp
        return payload


@dataclass
class RoundState:
    """Mutable state of one top-level call, threaded through its rounds."""

    messages: list[dict]
    round: int = 0
    pending: dict[str, ToolCall] = field(default_factory=dict)
    answered: set[str] = field(default_factory=set)
    finish_reason: str | None = None
    round_text: str = ""
    max_tools: MaxToolsTally = field(default_factory=MaxToolsTally)

    def begin_round(self) -> None:
        self.round += 1
        self.pending.clear()
        self.answered.clear()
        self.finish_reason = None
        self.round_text = ""

    @property
    def requests_tools(self) -> bool:
        return self.finish_reason in TOOL_CALLS_FINISH_REASONS

    def add_pending(self, call: ToolCall) -> None:
        if call.call_id in self.pending or call.call_id in self.answered:
            return
        self.pending[call.call_id] = call

    def mark_answered(self, call_id: str) -> None:
        self.answered.add(call_id)
        self.pending.pop(call_id, None)


# ---------------------------------------------------------------------------
# Streaming handle
# ---------------------------------------------------------------------------


class ChatStream:
    """
    Async iterable of ``StreamEvent`` paired with a deferred response.

    ``response`` is an ``asyncio.Future`` that resolves to the final
    ``AggregatedResponse`` once the stream has been consumed, or fails with
    the same exception the iteration raised.  The stream can be iterated
    once.
    """

    def __init__(
        self,
        events: AsyncGenerator[StreamEvent, None],
        aggregator: ResponseAggregator,
    ) -> None:
        self._events = events
        self._aggregator = aggregator
        self._future: asyncio.Future[AggregatedResponse] | None = None
        self._outcome: tuple[str, Any] | None = None
        self._started = False

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise RuntimeError("ChatStream can only be iterated once")
        self._started = True
        return self._iterate()

    @property
    def response(self) -> asyncio.Future[AggregatedResponse]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self._outcome is not None:
                self._resolve(self._future)
        return self._future

    async def collect(self) -> AggregatedResponse:
        """Drain any unconsumed events and return the final response."""
        if not self._started:
            async for _event in self:
                pass
        return await self.response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        try:
            async for event in self._events:
                yield event
            self._settle("result", self._aggregator.response)
        except Exception as exc:
            self._settle("error", exc)
            raise
        finally:
            if self._outcome is None:
                self._settle("cancelled", None)
            await self._events.aclose()

    def _settle(self, kind: str, value: Any) -> None:
        if self._outcome is not None:
            return
        self._outcome = (kind, value)
        if self._future is not None:
            self._resolve(self._future)

    def _resolve(self, future: asyncio.Future) -> None:
        if future.done() or self._outcome is None:
            return
        kind, value = self._outcome
        if kind == "result":
            future.set_result(value)
        elif kind == "error":
            future.set_exception(value)
        else:
            future.cancel()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """
    Multi-round tool orchestration loop.

    Parameters
    ----------
    transport : Transport
        Delivers each round's request and yields the response bytes.
    registry : PluginRegistry
        Source of advertised tool schemas, callbacks and hooks.
    build_request : callable
        Takes the current message history (list of wire dicts) and returns
        a ready-to-send request body.
    events : EventBus
        Lifecycle listeners.
    max_tool_rounds : int
        Maximum number of streaming rounds per call.  ``0`` means unbounded.
    tool_timeout : float
        Max seconds for a single callback.  ``0`` disables the timeout.
    validate_arguments : bool
        Validate call arguments against the tool's parameter schema before
        invoking its callback.
    on_tool_call : callable
        Optional handler that executes client tool calls instead of the
        registered callbacks.
    """

    def __init__(
        self,
        transport: Transport,
        registry: PluginRegistry,
        build_request: RequestFactory,
        events: EventBus | None = None,
        max_tool_rounds: int = 5,
        tool_timeout: float = 0.0,
        validate_arguments: bool = True,
        on_tool_call: ToolCallHandler | None = None,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.build_request = build_request
        self.events = events or EventBus()
        self.max_tool_rounds = max_tool_rounds
        self.tool_timeout = tool_timeout
        self.validate_arguments = validate_arguments
        self.on_tool_call = on_tool_call

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def stream(self, messages: list[ChatMessage | dict]) -> ChatStream:
        aggregator = ResponseAggregator()
        return ChatStream(self._run_rounds(messages, aggregator), aggregator)

    async def run(self, messages: list[ChatMessage | dict]) -> AggregatedResponse:
        """Buffered mode: consume the whole stream and return the response."""
        return await self.stream(messages).collect()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_rounds(
        self,
        messages: list[ChatMessage | dict],
        aggregator: ResponseAggregator,
    ) -> AsyncGenerator[StreamEvent, None]:
        state = RoundState(messages=[_message_dict(m) for m in messages])
        interpreter = EventInterpreter()
        self._emit(stream_start_event(list(state.messages)))

        try:
            while True:
                state.begin_round()
                logger.info("Starting round %d", state.round)
                request = await self._prepare_request(state.messages)

                async with aclosing(decode_frames(self.transport.stream(request))) as frames:
                    async for frame in frames:
                        for event in interpreter.interpret(frame):
                            if event.kind == EventKind.MAX_TOOLS_REACHED:
                                state.max_tools.add(event.value)
                                continue
                            self._observe(state, event)
                            aggregator.feed(event)
                            yield event

                if not state.pending or not state.requests_tools:
                    break
                if self._cap_reached(state):
                    logger.warning(
                        "Round cap of %d reached with %d pending tool call(s); not executing",
                        self.max_tool_rounds,
                        len(state.pending),
                    )
                    break

                results: list[ToolResult] = []
                for call in list(state.pending.values()):
                    result = await self._execute_tool_call(call)
                    results.append(result)
                    event = StreamEvent(EventKind.TOOL_RESULT, result)
                    aggregator.feed(event)
                    yield event
                interpreter.note_tool_activity()

                state.messages.append(self._follow_up_message(state, results))
        except Exception as exc:
            if is_timeout_error(exc):
                self._emit(timeout_event(TIMEOUT_MESSAGE))
            raise

        response = aggregator.response
        if state.max_tools.occurrences:
            payload = state.max_tools.to_payload()
            yield StreamEvent(EventKind.MAX_TOOLS_REACHED, payload)
            self._emit(
                max_tools_reached_event(
                    tools_executed=state.max_tools.tools_executed,
                    max_steps=state.max_tools.max_steps,
                    occurrences=state.max_tools.occurrences,
                    timestamp=state.max_tools.timestamp,
                )
            )

        await self.registry.run_after_response(response)
        logger.info("Finished after %d round(s), finish_reason=%s", state.round, response.finish_reason)
        self._emit(stream_end_event(response.to_dict()))

    def _cap_reached(self, state: RoundState) -> bool:
        return self.max_tool_rounds > 0 and state.round >= self.max_tool_rounds

    async def _prepare_request(self, messages: list[dict]) -> dict:
        request = self.build_request(list(messages))
        schemas = self.registry.tool_schemas()
        if schemas:
            request["clientTools"] = [s.to_dict() for s in schemas]
        return await self.registry.run_before_request(request)

    def _observe(self, state: RoundState, event: StreamEvent) -> None:
        kind = event.kind
        value = event.value

        if kind == EventKind.TEXT:
            state.round_text += value
        elif kind == EventKind.TOOL_CALL:
            if self.registry.has_executor(value.name):
                state.add_pending(value)
        elif kind == EventKind.TOOL_RESULT:
            state.mark_answered(value.call_id)
        elif kind == EventKind.FINISH:
            state.finish_reason = value.reason
        elif kind == EventKind.TIMEOUT:
            data = value if isinstance(value, dict) else {}
            self._emit(
                timeout_event(data.get("message") or TIMEOUT_MESSAGE, data.get("timestamp"))
            )
        elif kind in _METADATA_EVENT_TYPES:
            data = value if isinstance(value, dict) else {"value": value}
            self._emit(metadata_event(_METADATA_EVENT_TYPES[kind], data))

    @staticmethod
    def _follow_up_message(state: RoundState, results: list[ToolResult]) -> dict:
        invocations = []
        for result in results:
            call = state.pending[result.call_id]
            invocations.append(
                {
                    "state": "result",
                    "toolCallId": call.call_id,
                    "toolName": call.name,
                    "args": call.arguments,
                    "result": result.output,
                }
            )
        return ChatMessage(
            role="assistant",
            content=state.round_text,
            tool_invocations=invocations,
        ).to_dict()

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_call(self, call: ToolCall) -> ToolResult:
        """
        Execute one client tool call; failures become error outputs.

        Steps:
        1. Emit ``tool_start``
        2. Validate arguments against the tool schema
        3. Invoke the handler (with optional timeout)
        4. Emit ``tool_end``
        """
        self._emit(tool_start_event(call.call_id, call.name, call.arguments))
        start = time.monotonic()
        output, error = await self._invoke(call)

        duration_ms = int((time.monotonic() - start) * 1000)
        self._emit(tool_end_event(call.call_id, call.name, output, duration_ms, error))
        return ToolResult(
            call_id=call.call_id,
            name=call.name,
            output=output,
            is_error=error is not None,
        )

    async def _invoke(self, call: ToolCall) -> tuple[Any, str | None]:
        if self.validate_arguments:
            schema = self.registry.get_tool(call.name)
            if schema is not None:
                valid, error_msg = ArgumentValidator.validate(schema, call.arguments)
                if not valid:
                    return _error_output(f"Validation error: {error_msg}", ToolErrorCode.VALIDATION_ERROR)

        try:
            if self.tool_timeout > 0:
                output = await asyncio.wait_for(self._call_handler(call), timeout=self.tool_timeout)
            else:
                output = await self._call_handler(call)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, self.tool_timeout)
            return _error_output(f"Tool timed out after {self.tool_timeout}s", ToolErrorCode.TIMEOUT)
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            return _error_output(str(e) or type(e).__name__, ToolErrorCode.TOOL_EXCEPTION)
        return output, None

    async def _call_handler(self, call: ToolCall) -> Any:
        if self.on_tool_call is not None:
            return await _maybe_await(self.on_tool_call(call))
        return await self.registry.execute(call)

    def _emit(self, event: ClientEvent) -> None:
        self.events.emit(event)


def _error_output(message: str, code: str) -> tuple[dict, str]:
    return {"error": message, "code": code}, message
