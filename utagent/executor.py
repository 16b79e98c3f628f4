"""ReAct-style execution loop.

One :class:`AgentExecutor` runs one task: it appends the user's request,
alternates model calls with sequential tool dispatch until the model answers
without requesting tools, and reports the outcome as an :class:`AgentResult`.
Nothing raised by the adapter or the tools escapes :meth:`AgentExecutor.run`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

import httpx

from utagent.context import ContextManager
from utagent.errors import FailureKind, ProtocolError, failure_kind_for
from utagent.messages import AssistantTurn, ToolDescriptor
from utagent.providers import LlmAdapter, create_adapter
from utagent.streaming import CollectingStreamHandler, StreamHandler
from utagent.tool_registry import ToolRegistry

if TYPE_CHECKING:
    from utagent.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_TIMEOUT_S = 300.0


@dataclass
class AgentResult:
    """Outcome of one agent run (or of the last attempt, under retry)."""

    success: bool
    text: str = ""
    failure_kind: FailureKind | None = None
    detail: str | None = None
    iterations: int = 0
    tool_calls: int = 0
    duration_s: float = 0.0
    attempts: int = 1

    def summary(self) -> str:
        status = "success" if self.success else f"failed ({self.failure_kind})"
        parts = [
            f"status={status}",
            f"iterations={self.iterations}",
            f"tool_calls={self.tool_calls}",
            f"duration={self.duration_s:.1f}s",
        ]
        if self.attempts > 1:
            parts.append(f"attempts={self.attempts}")
        if self.detail:
            parts.append(f"detail={self.detail}")
        return " ".join(parts)


class AgentExecutor:
    def __init__(
        self,
        adapter: LlmAdapter,
        registry: ToolRegistry,
        context: ContextManager,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        timeout: float = DEFAULT_TIMEOUT_S,
        stream_handler: StreamHandler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self.adapter = adapter
        self.registry = registry
        self.context = context
        self.max_iterations = max_iterations
        self.timeout = timeout
        self.stream_handler = stream_handler
        self._clock = clock

    def run(self, user_text: str) -> AgentResult:
        started = self._clock()
        self.context.add_user(user_text)
        tools = self.registry.descriptors()
        iterations = 0
        dispatched = 0
        last_text = ""

        def finish(success: bool, kind: FailureKind | None = None, detail: str | None = None) -> AgentResult:
            result = AgentResult(
                success=success,
                text=last_text,
                failure_kind=kind,
                detail=detail,
                iterations=iterations,
                tool_calls=dispatched,
                duration_s=self._clock() - started,
            )
            log = logger.info if success else logger.warning
            log("AGENT_DONE %s", result.summary())
            return result

        try:
            while iterations < self.max_iterations:
                if self._clock() - started >= self.timeout:
                    return finish(False, "timeout", f"exceeded {self.timeout:.0f}s")
                iterations += 1
                logger.info(
                    "LLM_CALL adapter=%s model=%s iteration=%d turns=%d",
                    self.adapter.name,
                    self.adapter.model,
                    iterations,
                    self.context.size,
                )
                turn = self._call_model(tools)
                self.context.add(turn)
                last_text = turn.text
                if not turn.has_tool_calls:
                    return finish(True)
                for call in turn.tool_calls:
                    dispatched += 1
                    logger.info("TOOL_DISPATCH tool=%s id=%s", call.name, call.id)
                    outcome = self.registry.invoke_call(call)
                    self.context.add_tool_result(call.id, call.name, outcome)
        except Exception as exc:
            kind = failure_kind_for(exc)
            return finish(False, kind, f"{type(exc).__name__}: {exc}")

        return finish(False, "max_iterations", f"reached {self.max_iterations} iterations")

    def _call_model(self, tools: Sequence[ToolDescriptor]) -> AssistantTurn:
        turns = self.context.messages()
        if self.stream_handler is None:
            return self.adapter.chat(turns, tools)
        collector = CollectingStreamHandler(forward=self.stream_handler)
        self.adapter.chat_stream(turns, tools, collector)
        if collector.error is not None:
            raise collector.error
        if collector.turn is None:
            raise ProtocolError(f"{self.adapter.name} stream ended without completing")
        return collector.turn


def build_executor(
    config: "AppConfig",
    registry: ToolRegistry,
    system_prompt: str | None = None,
    *,
    stream_handler: StreamHandler | None = None,
    client: httpx.Client | None = None,
) -> AgentExecutor:
    """Fresh context and adapter for one attempt."""
    context = ContextManager(config.workflow.max_turns)
    if system_prompt:
        context.set_system(system_prompt)
    return AgentExecutor(
        create_adapter(config.llm, client=client),
        registry,
        context,
        max_iterations=config.workflow.max_iterations,
        timeout=config.workflow.timeout,
        stream_handler=stream_handler,
    )
