"""Policy-based interception of tool dispatch.

The interceptor wraps each registered tool's invoker at registration time.
Before a call it looks up the first policy rule for the tool's resource and
evaluates the rule's condition against the call arguments::

    governance:
      enabled: true
      policy:
        - resource: file-write
          action: ALLOW
          condition: "path.startswith('src/test/')"
        - resource: shell-exec
          action: DENY

An ALLOW rule whose condition is false, or a DENY rule with no condition or a
true one, raises :class:`~utagent.errors.GovernanceDenied`.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utagent import policy_expr
from utagent.errors import GovernanceDenied, PolicyExpressionError
from utagent.tool_registry import Invoker, RegisteredTool

logger = logging.getLogger(__name__)

RESOURCE_FILE_READ = "file-read"
RESOURCE_FILE_WRITE = "file-write"
RESOURCE_SHELL_EXEC = "shell-exec"

_PREVIEW_CHARS = 200


class PolicyRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource: str
    action: Literal["ALLOW", "DENY"] = "ALLOW"
    condition: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("condition")
    @classmethod
    def _check_condition(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            policy_expr.compile_condition(value)
        except PolicyExpressionError as exc:
            raise ValueError(str(exc)) from exc
        return value.strip()


class GovernanceConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    surface_denials: bool = Field(False, alias="surface-denials")
    policy: list[PolicyRule] = Field(default_factory=list)

    def rule_for(self, resource: str) -> PolicyRule | None:
        for rule in self.policy:
            if rule.resource == resource:
                return rule
        return None


def normalize_arguments(arguments: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize string arguments to forward slashes so path conditions are portable."""
    return {
        key: value.replace("\\", "/") if isinstance(value, str) else value
        for key, value in arguments.items()
    }


def _preview(text: Any) -> str:
    text = str(text)
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + "..."


class GovernanceInterceptor:
    """Interceptor factory: ``interceptor(tool, invoker) -> invoker``."""

    def __init__(self, config: GovernanceConfig | None = None) -> None:
        self.config = config or GovernanceConfig()

    def __call__(self, tool: RegisteredTool, invoker: Invoker) -> Invoker:
        def governed(arguments: Mapping[str, Any]) -> Any:
            scope = normalize_arguments(arguments)
            logger.info("TOOL_CALL tool=%s args=%s", tool.name, _preview(scope))
            try:
                self.check(tool, scope)
            except GovernanceDenied as exc:
                logger.warning("GOVERNANCE_DENIED tool=%s resource=%s reason=%s", tool.name, exc.resource, exc.reason)
                if self.config.surface_denials and tool.returns_text:
                    return f"Error: {exc}"
                raise
            try:
                result = invoker(arguments)
            except Exception as exc:
                logger.error("TOOL_ERROR tool=%s %s: %s", tool.name, type(exc).__name__, exc)
                if tool.returns_text:
                    return f"Error: Tool execution failed: {exc}"
                raise
            logger.info("TOOL_RESULT tool=%s result=%s", tool.name, _preview(result))
            return result

        return governed

    def check(self, tool: RegisteredTool, scope: Mapping[str, Any]) -> None:
        """Raise GovernanceDenied if the first matching rule refuses this call."""
        if not self.config.enabled or not tool.resource:
            return
        rule = self.config.rule_for(tool.resource)
        if rule is None:
            return
        if rule.action == "ALLOW":
            if rule.condition and not policy_expr.evaluate(rule.condition, scope):
                raise GovernanceDenied(tool.resource, f"Condition failed ({rule.condition})")
            return
        if not rule.condition or policy_expr.evaluate(rule.condition, scope):
            raise GovernanceDenied(tool.resource, "Explicitly denied")
