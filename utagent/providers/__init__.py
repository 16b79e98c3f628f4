"""Wire-protocol adapters and the factory that picks one from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from utagent.errors import ConfigurationError
from utagent.providers.anthropic import AnthropicAdapter
from utagent.providers.base import LlmAdapter, ToolCallAccumulator, iter_sse_data
from utagent.providers.gemini import GeminiAdapter
from utagent.providers.openai import OpenAiAdapter

if TYPE_CHECKING:
    from utagent.config import LlmConfig

_PROTOCOLS: dict[str, type[LlmAdapter]] = {
    "openai": OpenAiAdapter,
    "openai-zhipu": OpenAiAdapter,
    "zhipu": OpenAiAdapter,
    "anthropic": AnthropicAdapter,
    "claude": AnthropicAdapter,
    "gemini": GeminiAdapter,
    "google": GeminiAdapter,
}


def adapter_class(protocol: str) -> type[LlmAdapter]:
    try:
        return _PROTOCOLS[protocol.strip().lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown protocol {protocol!r}. Supported: {', '.join(sorted(_PROTOCOLS))}"
        ) from None


def create_adapter(config: "LlmConfig", client: httpx.Client | None = None) -> LlmAdapter:
    """Build the adapter named by ``config.protocol``."""
    cls = adapter_class(config.protocol)
    return cls(
        config.resolved_api_key(),
        model=config.model,
        base_url=config.base_url,
        temperature=config.temperature,
        timeout=config.timeout,
        max_tokens=config.max_tokens,
        custom_headers=config.custom_headers,
        log_requests=config.log_requests,
        client=client,
    )


__all__ = [
    "AnthropicAdapter",
    "GeminiAdapter",
    "LlmAdapter",
    "OpenAiAdapter",
    "ToolCallAccumulator",
    "adapter_class",
    "create_adapter",
    "iter_sse_data",
]
