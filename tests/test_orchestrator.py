"""Tests for the orchestration loop using mock transports and plugin bundles."""

from __future__ import annotations

import asyncio

import pytest

from hustle.errors import StreamTimeoutError, TransportError
from hustle.events import (
    EVENT_AUTO_RETRY,
    EVENT_MAX_TOOLS_REACHED,
    EVENT_STREAM_END,
    EVENT_STREAM_START,
    EVENT_TIMEOUT,
    EVENT_TOOL_END,
    EVENT_TOOL_START,
    LIFECYCLE_EVENTS,
    EventBus,
)
from hustle.orchestrator.core import Orchestrator, RoundState
from hustle.plugins.base import PluginBundle, ToolSchema
from hustle.plugins.registry import PluginRegistry
from hustle.request import RequestBuilder
from hustle.stream.interpreter import EventKind
from hustle.types import ChatMessage, ToolCall, ToolErrorCode
from tests.mock_plugins import make_echo_bundle, make_math_bundle, make_server_bundle
from tests.mock_transports import MockTransport, legacy_line, sse_line, text_round, tool_round


USER = [ChatMessage(role="user", content="hello")]


async def _registry(*bundles: PluginBundle) -> PluginRegistry:
    reg = PluginRegistry()
    for bundle in bundles:
        await reg.register(bundle)
    return reg


def _orchestrator(transport, registry, **kwargs) -> Orchestrator:
    return Orchestrator(
        transport=transport,
        registry=registry,
        build_request=RequestBuilder(api_key="test-key", vault_id="v1"),
        **kwargs,
    )


def _recorder(bus: EventBus, *event_types: str) -> list:
    seen: list = []
    for event_type in event_types or sorted(LIFECYCLE_EVENTS):
        bus.subscribe(event_type, seen.append)
    return seen


class TestToolLoop:
    """Multi-round execution of client tools."""

    async def test_tool_round_then_final_answer(self):
        transport = MockTransport(
            [
                tool_round("c1", "echo", {"message": "hi"}, text="Checking."),
                text_round("Done."),
            ]
        )
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        response = await orch.run(USER)

        assert transport.call_count == 2
        assert response.content == "Checking.\nDone."
        assert response.finish_reason == "stop"
        assert [c.call_id for c in response.tool_calls] == ["c1"]
        assert len(response.tool_results) == 1
        assert response.tool_results[0].output == {"echo": "hi"}
        assert not response.tool_results[0].is_error

    async def test_follow_up_request_carries_results(self):
        transport = MockTransport(
            [
                tool_round("c1", "echo", {"message": "hi"}, text="Checking."),
                text_round("Done."),
            ]
        )
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        await orch.run(USER)

        first, second = transport.requests
        assert first["messages"] == [{"role": "user", "content": "hello"}]
        assert [t["name"] for t in first["clientTools"]] == ["echo"]
        assert second["messages"][0] == {"role": "user", "content": "hello"}
        assert second["messages"][1] == {
            "role": "assistant",
            "content": "Checking.",
            "toolInvocations": [
                {
                    "state": "result",
                    "toolCallId": "c1",
                    "toolName": "echo",
                    "args": {"message": "hi"},
                    "result": {"echo": "hi"},
                }
            ],
        }

    async def test_no_client_tools_field_without_plugins(self):
        transport = MockTransport([text_round("Hi")])
        await _orchestrator(transport, PluginRegistry()).run(USER)
        assert "clientTools" not in transport.requests[0]

    async def test_round_cap_limits_requests(self):
        transport = MockTransport([tool_round("c1", "echo", {"message": "again"})])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), max_tool_rounds=2)
        response = await orch.run(USER)

        assert transport.call_count == 2
        assert len(response.tool_results) == 1
        assert response.finish_reason == "tool-calls"

    async def test_round_cap_of_one_executes_nothing(self):
        transport = MockTransport([tool_round("c1", "echo", {"message": "x"})])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), max_tool_rounds=1)
        response = await orch.run(USER)
        assert transport.call_count == 1
        assert response.tool_results == []

    async def test_zero_cap_is_unbounded(self):
        rounds = [tool_round(f"c{i}", "echo", {"message": str(i)}) for i in range(7)]
        rounds.append(text_round("finally"))
        transport = MockTransport(rounds)
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), max_tool_rounds=0)
        response = await orch.run(USER)

        assert transport.call_count == 8
        assert len(response.tool_results) == 7
        assert response.content.endswith("finally")

    async def test_callback_failure_becomes_error_output(self):
        transport = MockTransport([tool_round("c1", "explode", {}), text_round("Sorry.")])
        orch = _orchestrator(transport, await _registry(make_math_bundle()))
        response = await orch.run(USER)

        result = response.tool_results[0]
        assert result.is_error
        assert result.output == {"error": "boom", "code": "tool_exception"}
        follow_up = transport.requests[1]["messages"][1]
        assert follow_up["toolInvocations"][0]["result"] == result.output

    async def test_duplicate_call_ids_execute_once(self):
        calls = []

        def handler(call: ToolCall):
            calls.append(call.call_id)
            return "ok"

        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            legacy_line("e", {"finishReason": "tool-calls"}),
        ]
        transport = MockTransport([round_lines, text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), on_tool_call=handler)
        await orch.run(USER)
        assert calls == ["c1"]

    async def test_calls_in_one_round_run_in_order(self):
        log = []

        async def handler(call: ToolCall):
            log.append(("start", call.arguments["message"]))
            await asyncio.sleep(0)
            log.append(("end", call.arguments["message"]))
            return call.arguments["message"]

        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "1"}}),
            legacy_line("9", {"toolCallId": "c2", "toolName": "echo", "args": {"message": "2"}}),
            legacy_line("e", {"finishReason": "tool-calls"}),
        ]
        transport = MockTransport([round_lines, text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), on_tool_call=handler)
        response = await orch.run(USER)

        assert log == [("start", "1"), ("end", "1"), ("start", "2"), ("end", "2")]
        assert transport.call_count == 2
        follow_up = transport.requests[1]["messages"][1:]
        assert len(follow_up) == 1
        invocations = follow_up[0]["toolInvocations"]
        assert [i["toolCallId"] for i in invocations] == ["c1", "c2"]
        assert [i["result"] for i in invocations] == ["1", "2"]
        assert [r.output for r in response.tool_results] == ["1", "2"]

    async def test_same_call_under_both_standard_tags_executes_once(self):
        calls = []

        def handler(call: ToolCall):
            calls.append(call.call_id)
            return "ok"

        round_lines = [
            sse_line({"type": "start", "messageId": "m1"}),
            sse_line(
                {"type": "tool-input-available", "toolCallId": "c1", "toolName": "echo", "input": {"message": "a"}}
            ),
            sse_line({"type": "tool-call", "toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            sse_line({"type": "finish", "finishReason": "tool-calls"}),
        ]
        transport = MockTransport([round_lines, text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), on_tool_call=handler)
        await orch.run(USER)

        assert calls == ["c1"]
        invocations = transport.requests[1]["messages"][1]["toolInvocations"]
        assert [i["toolCallId"] for i in invocations] == ["c1"]

    async def test_standard_format_tool_round(self):
        transport = MockTransport(
            [
                [
                    sse_line({"type": "start", "messageId": "m1"}),
                    sse_line({"type": "text-delta", "delta": "Checking."}),
                    sse_line(
                        {
                            "type": "tool-input-available",
                            "toolCallId": "c1",
                            "toolName": "echo",
                            "input": {"message": "hi"},
                        }
                    ),
                    sse_line({"type": "finish", "finishReason": "tool-calls"}),
                ],
                [
                    sse_line({"type": "start", "messageId": "m2"}),
                    sse_line({"type": "text-delta", "delta": "Done."}),
                    sse_line({"type": "finish", "finishReason": "stop"}),
                    sse_line("[DONE]"),
                ],
            ]
        )
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        response = await orch.run(USER)

        assert transport.call_count == 2
        assert response.content == "Checking.\nDone."
        assert response.finish_reason == "stop"
        assert response.tool_results[0].output == {"echo": "hi"}
        assert transport.requests[1]["messages"][1]["toolInvocations"][0]["args"] == {"message": "hi"}

    async def test_server_answered_calls_are_skipped(self):
        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            legacy_line("a", {"toolCallId": "c1", "toolName": "echo", "result": "server"}),
            legacy_line("e", {"finishReason": "tool-calls"}),
        ]
        transport = MockTransport([round_lines])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        response = await orch.run(USER)

        assert transport.call_count == 1
        assert [r.output for r in response.tool_results] == ["server"]

    async def test_calls_without_executor_are_not_run(self):
        transport = MockTransport([tool_round("c1", "price_lookup", {"symbol": "SOL"})])
        orch = _orchestrator(transport, await _registry(make_server_bundle()))
        response = await orch.run(USER)
        assert transport.call_count == 1
        assert response.tool_results == []

    async def test_non_tool_finish_leaves_calls_unexecuted(self):
        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            legacy_line("e", {"finishReason": "stop"}),
        ]
        transport = MockTransport([round_lines])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        response = await orch.run(USER)
        assert transport.call_count == 1
        assert response.tool_results == []

    async def test_tool_calls_underscore_reason_also_loops(self):
        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {"message": "a"}}),
            legacy_line("e", {"finishReason": "tool_calls"}),
        ]
        transport = MockTransport([round_lines, text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        await orch.run(USER)
        assert transport.call_count == 2

    async def test_on_tool_call_replaces_executor(self):
        async def handler(call: ToolCall):
            return {"handled": call.name, "args": call.arguments}

        transport = MockTransport([tool_round("c1", "echo", {"message": "x"}), text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), on_tool_call=handler)
        response = await orch.run(USER)
        assert response.tool_results[0].output == {"handled": "echo", "args": {"message": "x"}}


class TestToolExecution:
    """Argument validation, timeouts and lifecycle events."""

    async def test_invalid_arguments_skip_callback(self):
        transport = MockTransport([tool_round("c1", "echo", {}), text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()))
        response = await orch.run(USER)

        output = response.tool_results[0].output
        assert output["code"] == "validation_error"
        assert output["error"].startswith("Validation error:")
        assert "message" in output["error"]

    async def test_validation_can_be_disabled(self):
        transport = MockTransport([tool_round("c1", "echo", {}), text_round("ok")])
        orch = _orchestrator(
            transport, await _registry(make_echo_bundle()), validate_arguments=False
        )
        response = await orch.run(USER)
        assert response.tool_results[0].output == {"echo": ""}

    async def test_slow_callback_times_out(self):
        async def slow(args):
            await asyncio.sleep(5)

        bundle = PluginBundle(
            name="sleepy",
            version="1",
            tools=[ToolSchema(name="nap", description="Sleeps.")],
            executors={"nap": slow},
        )
        transport = MockTransport([tool_round("c1", "nap", {}), text_round("ok")])
        orch = _orchestrator(transport, await _registry(bundle), tool_timeout=0.05)
        response = await orch.run(USER)

        output = response.tool_results[0].output
        assert output["code"] == "timeout"
        assert response.tool_results[0].is_error

    async def test_every_error_code_is_reachable(self):
        async def slow(args):
            await asyncio.sleep(5)

        sleepy = PluginBundle(
            name="sleepy",
            version="1",
            tools=[ToolSchema(name="nap", description="Sleeps.")],
            executors={"nap": slow},
        )
        round_lines = [
            legacy_line("9", {"toolCallId": "c1", "toolName": "echo", "args": {}}),
            legacy_line("9", {"toolCallId": "c2", "toolName": "explode", "args": {}}),
            legacy_line("9", {"toolCallId": "c3", "toolName": "nap", "args": {}}),
            legacy_line("e", {"finishReason": "tool-calls"}),
        ]
        transport = MockTransport([round_lines, text_round("ok")])
        registry = await _registry(make_echo_bundle(), make_math_bundle(), sleepy)
        response = await _orchestrator(transport, registry, tool_timeout=0.05).run(USER)

        codes = [r.output["code"] for r in response.tool_results]
        assert codes == [
            ToolErrorCode.VALIDATION_ERROR,
            ToolErrorCode.TOOL_EXCEPTION,
            ToolErrorCode.TIMEOUT,
        ]
        declared = {v for k, v in vars(ToolErrorCode).items() if k.isupper()}
        assert declared == set(codes)

    async def test_lifecycle_event_order(self):
        bus = EventBus()
        seen = _recorder(bus)
        transport = MockTransport([tool_round("c1", "echo", {"message": "hi"}), text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), events=bus)
        await orch.run(USER)

        assert [e.event_type for e in seen] == [
            EVENT_STREAM_START,
            EVENT_TOOL_START,
            EVENT_TOOL_END,
            EVENT_STREAM_END,
        ]
        start, tool_start, tool_end, end = seen
        assert start.payload["messages"] == [{"role": "user", "content": "hello"}]
        assert tool_start.payload == {"toolCallId": "c1", "toolName": "echo", "args": {"message": "hi"}}
        assert tool_end.payload["result"] == {"echo": "hi"}
        assert tool_end.payload["durationMs"] >= 0
        assert "error" not in tool_end.payload
        assert end.payload["response"]["content"] == "ok"

    async def test_tool_end_reports_error(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_TOOL_END)
        transport = MockTransport([tool_round("c1", "explode", {}), text_round("ok")])
        orch = _orchestrator(transport, await _registry(make_math_bundle()), events=bus)
        await orch.run(USER)
        assert seen[0].payload["error"] == "boom"


class TestMetadataEvents:
    async def test_max_tools_reached_consolidated(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_MAX_TOOLS_REACHED)
        first = tool_round(
            "c1",
            "echo",
            {"message": "a"},
            metadata=[{"type": "token_usage", "maxToolsReached": True, "toolsExecuted": 3, "maxSteps": 5}],
        )
        second = [
            legacy_line("0", "done"),
            legacy_line("2", [{"type": "token_usage", "maxToolsReached": True, "toolsExecuted": 2, "maxSteps": 5}]),
            legacy_line("e", {"finishReason": "stop"}),
        ]
        transport = MockTransport([first, second])
        orch = _orchestrator(transport, await _registry(make_echo_bundle()), events=bus)
        stream = orch.stream(USER)
        events = [e async for e in stream]

        max_events = [e for e in events if e.kind == EventKind.MAX_TOOLS_REACHED]
        assert len(max_events) == 1
        assert events[-1] is max_events[0]
        assert max_events[0].value == {"toolsExecuted": 5, "maxSteps": 5, "occurrences": 2}
        assert len(seen) == 1
        assert seen[0].payload == {"toolsExecuted": 5, "maxSteps": 5, "occurrences": 2}

    async def test_timed_out_usage_does_not_report_max_tools(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_MAX_TOOLS_REACHED)
        lines = [
            legacy_line("2", [{"type": "token_usage", "maxToolsReached": True, "timedOut": True}]),
            legacy_line("e", {"finishReason": "stop"}),
        ]
        orch = _orchestrator(MockTransport([lines]), PluginRegistry(), events=bus)
        await orch.run(USER)
        assert seen == []

    async def test_server_metadata_events(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_AUTO_RETRY, EVENT_TIMEOUT)
        lines = [
            legacy_line("2", [{"type": "auto_retry", "attempt": 2}]),
            legacy_line("2", [{"type": "timeout_occurred", "message": "Agent slow", "timestamp": "t1"}]),
            legacy_line("e", {"finishReason": "stop"}),
        ]
        orch = _orchestrator(MockTransport([lines]), PluginRegistry(), events=bus)
        await orch.run(USER)

        assert [e.event_type for e in seen] == [EVENT_AUTO_RETRY, EVENT_TIMEOUT]
        assert seen[0].payload == {"type": "auto_retry", "attempt": 2}
        assert seen[1].payload == {"message": "Agent slow", "timestamp": "t1"}


class TestFailures:
    async def test_transport_timeout(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_TIMEOUT, EVENT_STREAM_END)
        transport = MockTransport([[legacy_line("0", "partial")]], fail_with=StreamTimeoutError())
        stream = _orchestrator(transport, PluginRegistry(), events=bus).stream(USER)

        events = []
        with pytest.raises(StreamTimeoutError):
            async for event in stream:
                events.append(event)

        assert [e.kind for e in events] == [EventKind.TEXT, EventKind.ERROR]
        assert [e.event_type for e in seen] == [EVENT_TIMEOUT]
        assert seen[0].payload == {"message": "Request timed out"}
        with pytest.raises(StreamTimeoutError):
            await stream.response

    async def test_transport_error_propagates_after_error_event(self):
        bus = EventBus()
        seen = _recorder(bus, EVENT_TIMEOUT)
        transport = MockTransport([[legacy_line("0", "x")]], fail_with=TransportError("connection reset"))
        stream = _orchestrator(transport, PluginRegistry(), events=bus).stream(USER)

        events = []
        with pytest.raises(TransportError, match="connection reset"):
            async for event in stream:
                events.append(event)
        assert events[-1].kind == EventKind.ERROR
        assert events[-1].value == "connection reset"
        assert seen == []

    async def test_run_raises_transport_error(self):
        transport = MockTransport([[]], fail_with=TransportError("HTTP error: 500", status_code=500))
        with pytest.raises(TransportError) as exc_info:
            await _orchestrator(transport, PluginRegistry()).run(USER)
        assert exc_info.value.status_code == 500


class TestChatStream:
    async def test_stream_events_and_response(self):
        transport = MockTransport([text_round("Hi ", "there")])
        stream = _orchestrator(transport, PluginRegistry()).stream(USER)
        kinds = [e.kind async for e in stream]
        assert kinds == [EventKind.MESSAGE_ID, EventKind.TEXT, EventKind.TEXT, EventKind.FINISH]
        response = await stream.response
        assert response.content == "Hi there"

    async def test_response_awaited_before_iteration_completes(self):
        transport = MockTransport([text_round("Hi")])
        stream = _orchestrator(transport, PluginRegistry()).stream(USER)
        pending = stream.response
        assert not pending.done()
        async for _event in stream:
            pass
        assert (await pending).content == "Hi"

    async def test_iterate_once(self):
        stream = _orchestrator(MockTransport(), PluginRegistry()).stream(USER)
        async for _event in stream:
            pass
        with pytest.raises(RuntimeError, match="only be iterated once"):
            async for _event in stream:
                pass

    async def test_collect(self):
        stream = _orchestrator(MockTransport([text_round("ok")]), PluginRegistry()).stream(USER)
        response = await stream.collect()
        assert response.content == "ok"
        assert response.message_id == "m1"


class TestRoundState:
    def test_add_pending_dedups(self):
        state = RoundState(messages=[])
        state.add_pending(ToolCall("c1", "echo", {}))
        state.add_pending(ToolCall("c1", "echo", {"other": True}))
        assert list(state.pending) == ["c1"]
        assert state.pending["c1"].arguments == {}

    def test_answered_calls_not_re_added(self):
        state = RoundState(messages=[])
        state.mark_answered("c1")
        state.add_pending(ToolCall("c1", "echo", {}))
        assert state.pending == {}

    def test_begin_round_resets(self):
        state = RoundState(messages=[])
        state.add_pending(ToolCall("c1", "echo", {}))
        state.finish_reason = "tool-calls"
        state.round_text = "x"
        state.begin_round()
        assert state.round == 1
        assert state.pending == {}
        assert state.finish_reason is None
        assert state.round_text == ""
