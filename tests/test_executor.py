"""Tests for utagent.executor — the tool-calling loop."""

# mock-ok: the model is a scripted fake adapter; tools are real Python methods

from __future__ import annotations

from typing import Any, Sequence

import httpx
import pytest

from utagent.context import ContextManager
from utagent.errors import ProtocolError, TransportError
from utagent.executor import AgentExecutor, AgentResult
from utagent.governance import GovernanceConfig, GovernanceInterceptor
from utagent.messages import AssistantTurn, SystemTurn, ToolCall, ToolDescriptor, ToolResultTurn, Turn, UserTurn
from utagent.providers.anthropic import AnthropicAdapter
from utagent.streaming import CollectingStreamHandler, StreamHandler
from utagent.tool_registry import ToolRegistry, tool


class ScriptedAdapter:
    """Returns queued replies; an Exception in the queue is raised instead."""

    name = "scripted"
    model = "fake-1"

    def __init__(self, *replies: AssistantTurn | Exception) -> None:
        self.replies = list(replies)
        self.requests: list[tuple[tuple[Turn, ...], tuple[ToolDescriptor, ...]]] = []
        self.closed = False

    def chat(self, turns: Sequence[Turn], tools: Sequence[ToolDescriptor] = ()) -> AssistantTurn:
        self.requests.append((tuple(turns), tuple(tools)))
        reply = self.replies.pop(0) if self.replies else AssistantTurn(text="(no more replies)")
        if isinstance(reply, Exception):
            raise reply
        return reply

    def chat_stream(self, turns: Sequence[Turn], tools: Sequence[ToolDescriptor], handler: StreamHandler) -> None:
        try:
            reply = self.chat(turns, tools)
        except Exception as exc:
            handler.on_error(exc)
            return
        for word in reply.text.split(" "):
            handler.on_token(word)
        for call in reply.tool_calls:
            handler.on_tool_call(call)
        handler.on_complete(reply.text, reply.tool_calls)

    def close(self) -> None:
        self.closed = True


class Workspace:
    def __init__(self) -> None:
        self.files: dict[str, str] = {}

    @tool("Write a file", resource="file-write")
    def write_file(self, path: str, content: str) -> str:
        self.files[path] = content
        return f"wrote {path}"

    @tool("Read a file", resource="file-read")
    def read_file(self, path: str) -> str:
        return self.files[path]

    @tool("Count files")
    def count(self) -> int:
        raise RuntimeError("index corrupt")


def _call(name: str, call_id: str = "", **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def _executor(adapter: ScriptedAdapter, registry: ToolRegistry | None = None, **kwargs: Any) -> AgentExecutor:
    if registry is None:
        registry = ToolRegistry()
        registry.register(Workspace())
    context = ContextManager(kwargs.pop("max_turns", 20))
    context.set_system("system rules")
    return AgentExecutor(adapter, registry, context, **kwargs)  # type: ignore[arg-type]


class TestLoop:
    def test_direct_answer(self) -> None:
        adapter = ScriptedAdapter(AssistantTurn(text="All done."))
        result = _executor(adapter).run("write tests")
        assert result.success
        assert result.text == "All done."
        assert result.iterations == 1
        assert result.tool_calls == 0
        turns, tools = adapter.requests[0]
        assert turns == (SystemTurn("system rules"), UserTurn("write tests"))
        assert {t.name for t in tools} == {"write_file", "read_file", "count"}

    def test_tool_round_trip(self) -> None:
        adapter = ScriptedAdapter(
            AssistantTurn(
                text="",
                tool_calls=(
                    _call("write_file", "c1", path="ATest.py", content="assert True"),
                    _call("read_file", "c2", path="ATest.py"),
                ),
            ),
            AssistantTurn(text="Tests written."),
        )
        executor = _executor(adapter)
        result = executor.run("write tests")

        assert result.success
        assert result.iterations == 2
        assert result.tool_calls == 2
        second_request = adapter.requests[1][0]
        assert second_request[-2:] == (
            ToolResultTurn("c1", "write_file", "wrote ATest.py"),
            ToolResultTurn("c2", "read_file", "assert True"),
        )
        assert executor.context.messages()[-1] == AssistantTurn(text="Tests written.")

    def test_tool_failure_fed_back_as_text(self) -> None:
        adapter = ScriptedAdapter(
            AssistantTurn(tool_calls=(_call("read_file", "c1", path="missing.py"), _call("nope", "c2"))),
            AssistantTurn(text="recovered"),
        )
        result = _executor(adapter).run("go")
        assert result.success
        results = [t for t in adapter.requests[1][0] if isinstance(t, ToolResultTurn)]
        assert results[0].text == "Error: 'missing.py'"
        assert results[1].text == "Error: Unknown tool: nope"

    def test_max_iterations_dispatches_last_round(self) -> None:
        workspace = Workspace()
        registry = ToolRegistry()
        registry.register(workspace)
        adapter = ScriptedAdapter(
            *[
                AssistantTurn(text=f"step {i}", tool_calls=(_call("write_file", path=f"f{i}", content="x"),))
                for i in range(3)
            ]
        )
        result = _executor(adapter, registry, max_iterations=3).run("loop forever")
        assert not result.success
        assert result.failure_kind == "max_iterations"
        assert result.text == "step 2"
        assert result.iterations == 3
        assert set(workspace.files) == {"f0", "f1", "f2"}
        assert len(adapter.requests) == 3

    def test_context_stays_bounded(self) -> None:
        adapter = ScriptedAdapter(
            *[AssistantTurn(tool_calls=(_call("write_file", path="a", content="x"),)) for _ in range(10)],
            AssistantTurn(text="done"),
        )
        executor = _executor(adapter, max_turns=5)
        assert executor.run("go").success
        for turns, _ in adapter.requests:
            assert len(turns) <= 5
            assert turns[0] == SystemTurn("system rules")
            assert turns[1] == UserTurn("go")


class TestFailures:
    def test_transport_failure(self) -> None:
        adapter = ScriptedAdapter(TransportError("HTTP 503", status_code=503))
        result = _executor(adapter).run("go")
        assert not result.success
        assert result.failure_kind == "transport"
        assert "HTTP 503" in (result.detail or "")

    def test_protocol_failure(self) -> None:
        result = _executor(ScriptedAdapter(ProtocolError("bad json"))).run("go")
        assert result.failure_kind == "protocol"

    def test_wrong_shape_body_is_protocol_failure(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"content": ["oops"]})))
        registry = ToolRegistry()
        registry.register(Workspace())
        executor = AgentExecutor(AnthropicAdapter("ak-test", client=client), registry, ContextManager())
        result = executor.run("go")
        assert result.failure_kind == "protocol"

    def test_governance_denial_ends_run(self) -> None:
        config = GovernanceConfig.model_validate(
            {"enabled": True, "policy": [{"resource": "file-write", "action": "DENY"}]}
        )
        registry = ToolRegistry(interceptor=GovernanceInterceptor(config))
        registry.register(Workspace())
        adapter = ScriptedAdapter(
            AssistantTurn(text="writing", tool_calls=(_call("write_file", path="a", content="x"),)),
            AssistantTurn(text="never reached"),
        )
        result = _executor(adapter, registry).run("go")
        assert result.failure_kind == "governance_denied"
        assert result.text == "writing"
        assert len(adapter.requests) == 1

    def test_non_text_tool_failure(self) -> None:
        adapter = ScriptedAdapter(AssistantTurn(tool_calls=(_call("count"),)))
        result = _executor(adapter).run("go")
        assert result.failure_kind == "tool_execution"
        assert "index corrupt" in (result.detail or "")

    def test_timeout_checked_before_iteration(self) -> None:
        ticks = iter([0.0, 0.0, 11.0, 11.0])
        adapter = ScriptedAdapter(
            AssistantTurn(tool_calls=(_call("write_file", path="a", content="x"),)),
            AssistantTurn(text="late"),
        )
        executor = _executor(adapter, timeout=10.0, clock=lambda: next(ticks))
        result = executor.run("go")
        assert result.failure_kind == "timeout"
        assert result.iterations == 1
        assert len(adapter.requests) == 1

    def test_invalid_max_iterations(self) -> None:
        with pytest.raises(ValueError):
            _executor(ScriptedAdapter(), max_iterations=0)


class TestStreaming:
    def test_stream_handler_receives_tokens(self) -> None:
        adapter = ScriptedAdapter(
            AssistantTurn(text="let me write", tool_calls=(_call("write_file", "c1", path="a", content="x"),)),
            AssistantTurn(text="done now"),
        )
        sink = CollectingStreamHandler()
        result = _executor(adapter, stream_handler=sink).run("go")
        assert result.success
        assert result.text == "done now"
        assert sink.tokens == ["let", "me", "write", "done", "now"]
        assert [c.id for c in sink.tool_calls] == ["c1"]

    def test_stream_error_maps_to_failure(self) -> None:
        adapter = ScriptedAdapter(TransportError("reset"))
        result = _executor(adapter, stream_handler=CollectingStreamHandler()).run("go")
        assert result.failure_kind == "transport"


def test_summary() -> None:
    ok = AgentResult(success=True, iterations=2, tool_calls=3, duration_s=1.5)
    assert ok.summary() == "status=success iterations=2 tool_calls=3 duration=1.5s"
    failed = AgentResult(success=False, failure_kind="transport", detail="HTTP 500", attempts=3)
    assert "failed (transport)" in failed.summary()
    assert "attempts=3" in failed.summary()
    assert "detail=HTTP 500" in failed.summary()
