"""OpenAI-compatible chat completions (OpenAI, Zhipu and other compatible gateways)."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

from utagent.errors import ProtocolError
from utagent.messages import AssistantTurn, SystemTurn, ToolCall, ToolDescriptor, ToolResultTurn, Turn, UserTurn
from utagent.providers.base import LlmAdapter, ToolCallAccumulator, parse_arguments
from utagent.streaming import StreamHandler

logger = logging.getLogger(__name__)

# Gateways that serve the API under their own versioned path.
_UNVERSIONED_PATH_MARKERS = ("/paas/", "/coding/")


class OpenAiAdapter(LlmAdapter):
    name = "openai"
    default_model = "gpt-4o"
    default_base_url = "https://api.openai.com/v1"

    @classmethod
    def normalize_base_url(cls, base_url: str | None) -> str:
        url = (base_url or cls.default_base_url).strip().rstrip("/")
        if not url.endswith("/v1") and not any(marker in url for marker in _UNVERSIONED_PATH_MARKERS):
            url += "/v1"
        return url

    def endpoint(self, stream: bool) -> str:
        return f"{self.base_url}/chat/completions"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_payload(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [_encode_turn(t) for t in turns],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters.to_json_schema(),
                    },
                }
                for t in tools
            ]
            payload["tool_choice"] = "auto"
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: dict[str, Any]) -> AssistantTurn:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProtocolError("openai response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProtocolError("openai response choice has no message")
        calls: list[ToolCall] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            arguments = parse_arguments(function.get("arguments"))
            if arguments is None:
                raise ProtocolError(f"openai tool call {function.get('name')!r} has non-object arguments")
            calls.append(ToolCall(id=raw.get("id") or "", name=function.get("name", ""), arguments=arguments))
        return AssistantTurn(text=message.get("content") or "", tool_calls=tuple(calls))

    def consume_stream(
        self,
        events: Iterator[dict[str, Any]],
        handler: StreamHandler,
    ) -> tuple[str, list[ToolCall]]:
        text: list[str] = []
        pending = ToolCallAccumulator()
        for event in events:
            choices = event.get("choices") or []
            if not choices:
                continue
            choice = choices[0]
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                text.append(content)
                handler.on_token(content)
            for fragment in delta.get("tool_calls") or []:
                index = fragment.get("index", 0)
                function = fragment.get("function") or {}
                pending.start(index, fragment.get("id"), function.get("name"))
                pending.add_fragment(index, function.get("arguments"))
            if choice.get("finish_reason") in ("tool_calls", "stop"):
                break
        return "".join(text), pending.finish()


def _encode_turn(turn: Turn) -> dict[str, Any]:
    if isinstance(turn, (SystemTurn, UserTurn)):
        return {"role": turn.role, "content": turn.text}
    if isinstance(turn, AssistantTurn):
        # content must be a string even alongside tool_calls
        msg: dict[str, Any] = {"role": "assistant", "content": turn.text or ""}
        if turn.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments_json()},
                }
                for call in turn.tool_calls
            ]
        return msg
    if isinstance(turn, ToolResultTurn):
        return {"role": "tool", "tool_call_id": turn.tool_call_id, "content": turn.text}
    raise TypeError(f"Unsupported turn type: {type(turn).__name__}")
