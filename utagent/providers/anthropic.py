"""Anthropic Messages API."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

from utagent.errors import ProtocolError
from utagent.messages import AssistantTurn, SystemTurn, ToolCall, ToolDescriptor, ToolResultTurn, Turn, UserTurn
from utagent.providers.base import LlmAdapter, ToolCallAccumulator
from utagent.streaming import StreamHandler

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 8192


class AnthropicAdapter(LlmAdapter):
    name = "anthropic"
    default_model = "claude-3-5-sonnet-20241022"
    default_base_url = "https://api.anthropic.com"

    def endpoint(self, stream: bool) -> str:
        return f"{self.base_url}/v1/messages"

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}

    def build_payload(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if stream:
            payload["stream"] = True

        messages: list[dict[str, Any]] = []
        for turn in turns:
            if isinstance(turn, SystemTurn):
                payload["system"] = turn.text
            elif isinstance(turn, ToolResultTurn):
                block = {"type": "tool_result", "tool_use_id": turn.tool_call_id, "content": turn.text}
                previous = messages[-1] if messages else None
                if previous is not None and previous.get("_tool_results"):
                    previous["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block], "_tool_results": True})
            else:
                messages.append(_encode_turn(turn))
        for msg in messages:
            msg.pop("_tool_results", None)
        payload["messages"] = messages

        if tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters.to_json_schema()}
                for t in tools
            ]
        return payload

    def parse_response(self, data: dict[str, Any]) -> AssistantTurn:
        if data.get("type") == "error":
            error = data.get("error") or {}
            raise ProtocolError(f"anthropic error: {error.get('message', error)}")
        content = data.get("content")
        if not isinstance(content, list):
            raise ProtocolError("anthropic response has no content list")
        text: list[str] = []
        calls: list[ToolCall] = []
        for block in content:
            kind = block.get("type")
            if kind == "text":
                text.append(block.get("text") or "")
            elif kind == "tool_use":
                calls.append(ToolCall(id=block.get("id") or "", name=block.get("name", ""), arguments=block.get("input") or {}))
        return AssistantTurn(text="".join(text), tool_calls=tuple(calls))

    def consume_stream(
        self,
        events: Iterator[dict[str, Any]],
        handler: StreamHandler,
    ) -> tuple[str, list[ToolCall]]:
        text: list[str] = []
        pending = ToolCallAccumulator()
        for event in events:
            kind = event.get("type")
            if kind == "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    pending.start(event.get("index", 0), block.get("id"), block.get("name"))
            elif kind == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta":
                    token = delta.get("text") or ""
                    if token:
                        text.append(token)
                        handler.on_token(token)
                elif delta.get("type") == "input_json_delta":
                    pending.add_fragment(event.get("index", 0), delta.get("partial_json"))
            elif kind == "message_stop":
                break
            elif kind == "error":
                error = event.get("error") or {}
                raise ProtocolError(f"anthropic stream error: {error.get('message', error)}")
        return "".join(text), pending.finish()


def _encode_turn(turn: Turn) -> dict[str, Any]:
    if isinstance(turn, UserTurn):
        return {"role": "user", "content": turn.text}
    if isinstance(turn, AssistantTurn):
        blocks: list[dict[str, Any]] = []
        if turn.text:
            blocks.append({"type": "text", "text": turn.text})
        for call in turn.tool_calls:
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": dict(call.arguments)})
        return {"role": "assistant", "content": blocks or turn.text}
    raise TypeError(f"Unsupported turn type: {type(turn).__name__}")
