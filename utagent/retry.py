"""Retry primitives: exponential backoff and the whole-task retry wrapper."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, TypeVar

from utagent.errors import RETRYABLE_KINDS

if TYPE_CHECKING:
    from utagent.config import WorkflowConfig
    from utagent.executor import AgentExecutor, AgentResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float = 1.0, multiplier: float = 2.0, max_delay: float = 30.0) -> float:
    """Delay before retry ``attempt`` (0-based): ``base * multiplier**attempt``, capped."""
    return min(base_delay * (multiplier ** attempt), max_delay)


@dataclass
class RetryPolicy:
    """Whole-task retry settings.

    ``retry_on`` lists the ``AgentResult.failure_kind`` values worth another
    attempt. Governance denials are never retried even if listed.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    retry_on: frozenset[str] = field(default_factory=lambda: RETRYABLE_KINDS)
    on_retry: Callable[[int, "AgentResult", float], None] | None = None

    @classmethod
    def from_workflow(cls, workflow: "WorkflowConfig") -> "RetryPolicy":
        return cls(
            max_retries=workflow.max_retries,
            base_delay=workflow.retry_base_delay,
            multiplier=workflow.retry_multiplier,
            max_delay=workflow.retry_max_delay,
        )

    def delay(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.multiplier, self.max_delay)

    def should_retry(self, result: "AgentResult") -> bool:
        if result.success or result.failure_kind is None:
            return False
        if result.failure_kind == "governance_denied":
            return False
        return result.failure_kind in self.retry_on


def run_sync_with_retry(
    *,
    caller: str,
    max_retries: int,
    invoke: Callable[[int], T],
    should_retry: Callable[[Exception], bool],
    compute_delay: Callable[[int], float],
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute sync attempts, retrying exceptions accepted by ``should_retry``."""
    for attempt in range(max_retries + 1):
        try:
            return invoke(attempt)
        except Exception as exc:
            if not should_retry(exc) or attempt >= max_retries:
                raise
            delay = compute_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            logger.warning(
                "RETRY %s attempt %d/%d failed (retrying in %.1fs): %s",
                caller,
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            sleep(delay)

    raise RuntimeError("run_sync_with_retry exhausted without returning")


def run_agent_with_retry(
    make_executor: Callable[[], "AgentExecutor"],
    user_text: str,
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> "AgentResult":
    """Run a task, rebuilding the executor for every attempt.

    ``make_executor`` must return an executor with a fresh context and adapter;
    a partially populated history is never carried into a retry.
    """
    policy = policy or RetryPolicy()
    result: AgentResult | None = None
    for attempt in range(policy.max_retries + 1):
        executor = make_executor()
        try:
            result = executor.run(user_text)
        finally:
            executor.adapter.close()
        result.attempts = attempt + 1
        if not policy.should_retry(result) or attempt >= policy.max_retries:
            return result
        delay = policy.delay(attempt)
        if policy.on_retry is not None:
            policy.on_retry(attempt, result, delay)
        logger.warning(
            "RETRY agent attempt %d/%d failed (%s, retrying in %.1fs): %s",
            attempt + 1,
            policy.max_retries + 1,
            result.failure_kind,
            delay,
            result.detail,
        )
        sleep(delay)

    raise RuntimeError("run_agent_with_retry exhausted without returning")
