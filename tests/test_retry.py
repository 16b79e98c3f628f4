from __future__ import annotations

import json

import httpx
import pytest

from utagent.config import AppConfig
from utagent.errors import TransportError
from utagent.executor import AgentExecutor, AgentResult, build_executor
from utagent.messages import AssistantTurn, SystemTurn, UserTurn
from utagent.retry import RetryPolicy, backoff_delay, run_agent_with_retry, run_sync_with_retry
from utagent.tool_registry import ToolRegistry, tool


class FakeExecutor:
    class _Adapter:
        def __init__(self) -> None:
            self.closed = False

        def close(self) -> None:
            self.closed = True

    def __init__(self, result: AgentResult) -> None:
        self.result = result
        self.adapter = self._Adapter()
        self.inputs: list[str] = []

    def run(self, user_text: str) -> AgentResult:
        self.inputs.append(user_text)
        return self.result


def _factory(*results: AgentResult) -> tuple[list[FakeExecutor], object]:
    built: list[FakeExecutor] = []
    queue = list(results)

    def make() -> FakeExecutor:
        executor = FakeExecutor(queue.pop(0))
        built.append(executor)
        return executor

    return built, make


class TestBackoff:
    def test_sequence_and_cap(self) -> None:
        assert [backoff_delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_custom(self) -> None:
        assert backoff_delay(0, base_delay=0.5, multiplier=3.0, max_delay=10.0) == 0.5
        assert backoff_delay(2, base_delay=0.5, multiplier=3.0, max_delay=10.0) == 4.5
        assert backoff_delay(5, base_delay=0.5, multiplier=3.0, max_delay=10.0) == 10.0


class TestRunAgentWithRetry:
    def test_retries_transport_with_fresh_executor(self) -> None:
        built, make = _factory(
            AgentResult(success=False, failure_kind="transport", detail="503"),
            AgentResult(success=False, failure_kind="protocol", detail="bad json"),
            AgentResult(success=True, text="done"),
        )
        sleeps: list[float] = []
        result = run_agent_with_retry(make, "task", RetryPolicy(), sleep=sleeps.append)  # type: ignore[arg-type]

        assert result.success
        assert result.attempts == 3
        assert sleeps == [1.0, 2.0]
        assert len(built) == 3
        assert all(e.inputs == ["task"] for e in built)
        assert all(e.adapter.closed for e in built)

    def test_gives_up_after_max_retries(self) -> None:
        built, make = _factory(*[AgentResult(success=False, failure_kind="transport") for _ in range(3)])
        sleeps: list[float] = []
        result = run_agent_with_retry(make, "task", RetryPolicy(max_retries=2), sleep=sleeps.append)  # type: ignore[arg-type]
        assert not result.success
        assert result.attempts == 3
        assert len(sleeps) == 2

    @pytest.mark.parametrize("kind", ["governance_denied", "max_iterations", "tool_execution", "timeout"])
    def test_non_retryable_kinds(self, kind: str) -> None:
        built, make = _factory(AgentResult(success=False, failure_kind=kind))  # type: ignore[arg-type]
        result = run_agent_with_retry(make, "task", RetryPolicy(), sleep=lambda s: None)  # type: ignore[arg-type]
        assert result.failure_kind == kind
        assert result.attempts == 1
        assert len(built) == 1

    def test_governance_never_retried_even_if_listed(self) -> None:
        policy = RetryPolicy(retry_on=frozenset({"governance_denied", "transport"}))
        assert not policy.should_retry(AgentResult(success=False, failure_kind="governance_denied"))

    def test_on_retry_callback(self) -> None:
        seen: list[tuple[int, str | None, float]] = []
        _, make = _factory(
            AgentResult(success=False, failure_kind="transport"),
            AgentResult(success=True),
        )
        policy = RetryPolicy(on_retry=lambda attempt, result, delay: seen.append((attempt, result.failure_kind, delay)))
        run_agent_with_retry(make, "task", policy, sleep=lambda s: None)  # type: ignore[arg-type]
        assert seen == [(0, "transport", 1.0)]


def test_run_sync_with_retry_retries_and_succeeds() -> None:
    attempts: list[int] = []
    sleeps: list[float] = []

    def invoke(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 2:
            raise TransportError("transient")
        return "ok"

    result = run_sync_with_retry(
        caller="test",
        max_retries=3,
        invoke=invoke,
        should_retry=lambda exc: isinstance(exc, TransportError),
        compute_delay=lambda attempt: 0.5 * (attempt + 1),
        sleep=sleeps.append,
    )

    assert result == "ok"
    assert attempts == [0, 1, 2]
    assert sleeps == [0.5, 1.0]


def test_run_sync_with_retry_non_retryable_raises() -> None:
    def invoke(attempt: int) -> str:
        raise ValueError("permanent")

    with pytest.raises(ValueError, match="permanent"):
        run_sync_with_retry(
            caller="test",
            max_retries=3,
            invoke=invoke,
            should_retry=lambda exc: isinstance(exc, TransportError),
            compute_delay=lambda attempt: 0.0,
            sleep=lambda s: None,
        )


def test_run_sync_with_retry_exhausts() -> None:
    calls: list[int] = []

    def invoke(attempt: int) -> str:
        calls.append(attempt)
        raise TransportError("down")

    with pytest.raises(TransportError):
        run_sync_with_retry(
            caller="test",
            max_retries=1,
            invoke=invoke,
            should_retry=lambda exc: True,
            compute_delay=lambda attempt: 0.0,
            sleep=lambda s: None,
        )
    assert calls == [0, 1]


def test_policy_from_workflow() -> None:
    from utagent.config import WorkflowConfig

    workflow = WorkflowConfig.model_validate({"max-retries": 5, "retry-base-delay": 0.25, "retry-max-delay": 2})
    policy = RetryPolicy.from_workflow(workflow)
    assert policy.max_retries == 5
    assert [policy.delay(n) for n in range(5)] == [0.25, 0.5, 1.0, 2.0, 2.0]


class Notes:
    @tool("Record a note")
    def note(self, text: str) -> str:
        return f"noted {text}"


# mock-ok: HTTP is served by httpx.MockTransport; no network access
class TestRetryWithRealExecutors:
    def test_each_attempt_starts_from_seed_turns(self) -> None:
        bodies: list[dict] = []
        replies = [
            httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "message": {
                                "content": "noting",
                                "tool_calls": [
                                    {"id": "c1", "type": "function", "function": {"name": "note", "arguments": '{"text": "a"}'}}
                                ],
                            }
                        }
                    ]
                },
            ),
            httpx.Response(503, text="overloaded"),
            httpx.Response(200, json={"choices": [{"message": {"content": "done"}}]}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return replies.pop(0)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        config = AppConfig.from_mapping({"llm": {"protocol": "openai", "api-key": "sk-test"}}, env={})
        registry = ToolRegistry()
        registry.register(Notes())

        built: list[AgentExecutor] = []

        def make() -> AgentExecutor:
            executor = build_executor(config, registry, "sys", client=client)
            built.append(executor)
            return executor

        result = run_agent_with_retry(make, "write tests", RetryPolicy(max_retries=2), sleep=lambda _s: None)

        assert result.success
        assert result.text == "done"
        assert result.attempts == 2
        assert len(built) == 2
        assert built[0].context is not built[1].context
        assert len(bodies) == 3
        assert bodies[2]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "write tests"},
        ]
        assert built[1].context.messages() == (
            SystemTurn("sys"),
            UserTurn("write tests"),
            AssistantTurn(text="done"),
        )
