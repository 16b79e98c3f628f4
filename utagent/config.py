"""Typed runtime configuration for utagent.

Configuration is read from a YAML file into pydantic models. Keys may be
written hyphenated (``api-key``) or snake_case (``api_key``). A handful of
environment variables override the file so secrets need not be stored in it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from utagent.errors import ConfigurationError
from utagent.governance import GovernanceConfig
from utagent.providers import adapter_class

logger = logging.getLogger(__name__)

API_KEY_ENV = "UTAGENT_API_KEY"
MODEL_ENV = "UTAGENT_MODEL"
BASE_URL_ENV = "UTAGENT_BASE_URL"
MAX_ITERATIONS_ENV = "UTAGENT_MAX_ITERATIONS"

# Fallback key variables, by adapter name.
_PROVIDER_KEY_ENVS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LlmConfig(_ConfigModel):
    protocol: str = "openai"
    api_key: str | None = Field(None, alias="api-key")
    model: str | None = Field(None, alias="model-name")
    base_url: str | None = Field(None, alias="base-url")
    temperature: float | None = None
    timeout: float = Field(120.0, gt=0)
    max_tokens: int | None = Field(None, alias="max-tokens", gt=0)
    custom_headers: dict[str, str] = Field(default_factory=dict, alias="custom-headers")
    log_requests: bool = Field(False, alias="log-requests")

    @field_validator("protocol")
    @classmethod
    def _known_protocol(cls, value: str) -> str:
        try:
            adapter_class(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return value.strip().lower()

    def resolved_api_key(self) -> str:
        """The configured key, else the provider's conventional env variable."""
        if self.api_key:
            return self.api_key
        adapter = adapter_class(self.protocol).name
        for var in _PROVIDER_KEY_ENVS.get(adapter, ()):
            value = os.environ.get(var, "").strip()
            if value:
                return value
        raise ConfigurationError(
            f"No API key for protocol {self.protocol!r}: set llm.api-key, {API_KEY_ENV}, "
            f"or {' / '.join(_PROVIDER_KEY_ENVS.get(adapter, ()))}"
        )


class WorkflowConfig(_ConfigModel):
    max_iterations: int = Field(50, alias="max-iterations", ge=1)
    max_turns: int = Field(20, alias="max-turns", ge=2)
    timeout: float = Field(300.0, gt=0)
    max_retries: int = Field(3, alias="max-retries", ge=0)
    retry_base_delay: float = Field(1.0, alias="retry-base-delay", ge=0)
    retry_multiplier: float = Field(2.0, alias="retry-multiplier", ge=1)
    retry_max_delay: float = Field(30.0, alias="retry-max-delay", ge=0)


class PromptConfig(_ConfigModel):
    system: str | None = None


class AppConfig(_ConfigModel):
    llm: LlmConfig = Field(default_factory=LlmConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    governance: GovernanceConfig = Field(default_factory=GovernanceConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None, env: Mapping[str, str] | None = None) -> "AppConfig":
        env = os.environ if env is None else env
        data = _apply_env_overrides(dict(raw or {}), env)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}", original=exc) from exc


def _apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    llm = dict(data.get("llm") or {})
    for var, key, alias in (
        (API_KEY_ENV, "api_key", "api-key"),
        (MODEL_ENV, "model", "model-name"),
        (BASE_URL_ENV, "base_url", "base-url"),
    ):
        value = env.get(var, "").strip()
        if value:
            llm.pop(alias, None)
            llm[key] = value
    data["llm"] = llm

    raw_iterations = env.get(MAX_ITERATIONS_ENV, "").strip()
    if raw_iterations:
        try:
            iterations = int(raw_iterations)
            if iterations < 1:
                raise ValueError(raw_iterations)
        except ValueError:
            logger.warning(
                "Invalid %s=%r; expected a positive integer. Ignoring.",
                MAX_ITERATIONS_ENV,
                raw_iterations,
            )
        else:
            workflow = dict(data.get("workflow") or {})
            workflow.pop("max-iterations", None)
            workflow["max_iterations"] = iterations
            data["workflow"] = workflow
    return data


def load_config(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    """Load configuration from a YAML file (or defaults when ``path`` is None).

    Raises:
        ConfigurationError: missing file, malformed YAML, or invalid values.
    """
    if path is None:
        return AppConfig.from_mapping({}, env)
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Config file not found: {p}")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed YAML in {p}: {exc}", original=exc) from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config must be a mapping, got {type(raw).__name__}: {p}")
    config = AppConfig.from_mapping(raw, env)
    logger.debug("Loaded config %s (protocol=%s, governance=%s)", p, config.llm.protocol, config.governance.enabled)
    return config
