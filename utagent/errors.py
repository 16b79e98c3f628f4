"""Structured error types for utagent.

Adapters raise :class:`TransportError` and :class:`ProtocolError`; the
governance layer raises :class:`GovernanceDenied`. The execution loop never
lets any of these escape: it maps them onto an ``AgentResult.failure_kind``
with :func:`failure_kind_for`, and the retry wrapper decides from that kind
whether another attempt is worthwhile::

    from utagent.errors import TransportError

    try:
        turn = adapter.chat(turns, tools)
    except TransportError as exc:
        if exc.status_code == 401:
            ...
"""

from __future__ import annotations

from typing import Literal

import httpx

FailureKind = Literal[
    "max_iterations",
    "timeout",
    "transport",
    "protocol",
    "governance_denied",
    "tool_execution",
    "error",
]

RETRYABLE_KINDS: frozenset[str] = frozenset({"transport", "protocol"})


class AgentError(Exception):
    """Base for all utagent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class TransportError(AgentError):
    """Network failure, timeout or non-2xx HTTP status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.status_code = status_code
        self.body = body


class ProtocolError(AgentError):
    """Response arrived but could not be parsed or violated the wire schema."""


class GovernanceDenied(AgentError):
    """A policy rule refused a tool dispatch."""

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"Access denied for resource '{resource}': {reason}")
        self.resource = resource
        self.reason = reason


class ToolExecutionError(AgentError):
    """A non-text tool failed; text tools report failures as result text instead."""

    def __init__(self, tool_name: str, message: str, original: Exception | None = None) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}", original=original)
        self.tool_name = tool_name


class ConfigurationError(AgentError):
    """Invalid or incomplete configuration."""


class PolicyExpressionError(AgentError):
    """A governance condition uses syntax outside the supported subset."""


def wrap_transport_error(error: Exception) -> AgentError:
    """Wrap an httpx (or other) exception as a TransportError.

    If the error is already an AgentError, returns it unchanged.
    """
    if isinstance(error, AgentError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return TransportError(
            f"HTTP {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
            body=response.text,
            original=error,
        )
    if isinstance(error, httpx.TimeoutException):
        return TransportError(f"Request timed out: {error}", original=error)
    return TransportError(f"{type(error).__name__}: {error}", original=error)


def failure_kind_for(error: Exception) -> FailureKind:
    """Classify an exception raised inside the loop into a failure kind."""
    if isinstance(error, GovernanceDenied):
        return "governance_denied"
    if isinstance(error, TransportError):
        return "transport"
    if isinstance(error, httpx.HTTPError):
        return "transport"
    if isinstance(error, ProtocolError):
        return "protocol"
    if isinstance(error, ToolExecutionError):
        return "tool_execution"
    return "error"


def is_retryable(kind: str | None) -> bool:
    return kind in RETRYABLE_KINDS
