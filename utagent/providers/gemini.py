"""Google Gemini generateContent API."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

from utagent.messages import AssistantTurn, SystemTurn, ToolCall, ToolDescriptor, ToolResultTurn, Turn, UserTurn
from utagent.providers.base import LlmAdapter, ToolCallAccumulator
from utagent.streaming import StreamHandler

logger = logging.getLogger(__name__)

_API_VERSION = "/v1beta"


class GeminiAdapter(LlmAdapter):
    name = "gemini"
    default_model = "gemini-1.5-flash"
    default_base_url = "https://generativelanguage.googleapis.com"

    @classmethod
    def normalize_base_url(cls, base_url: str | None) -> str:
        url = (base_url or cls.default_base_url).strip().rstrip("/")
        if not url.endswith(_API_VERSION):
            url += _API_VERSION
        return url

    def endpoint(self, stream: bool) -> str:
        if stream:
            return f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse&key={self.api_key}"
        return f"{self.base_url}/models/{self.model}:generateContent?key={self.api_key}"

    def loggable_url(self, url: str) -> str:
        return url.replace(self.api_key, "***")

    def headers(self) -> dict[str, str]:
        return {}

    def build_payload(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        contents: list[dict[str, Any]] = []
        for turn in turns:
            if isinstance(turn, SystemTurn):
                payload["systemInstruction"] = {"parts": [{"text": turn.text}]}
            elif isinstance(turn, ToolResultTurn):
                part = {"functionResponse": {"name": turn.name, "response": {"result": turn.text}}}
                previous = contents[-1] if contents else None
                if previous is not None and previous["role"] == "user" and "functionResponse" in previous["parts"][0]:
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
            elif isinstance(turn, UserTurn):
                contents.append({"role": "user", "parts": [{"text": turn.text}]})
            elif isinstance(turn, AssistantTurn):
                parts: list[dict[str, Any]] = []
                if turn.text:
                    parts.append({"text": turn.text})
                for call in turn.tool_calls:
                    parts.append({"functionCall": {"name": call.name, "args": dict(call.arguments)}})
                contents.append({"role": "model", "parts": parts or [{"text": ""}]})
            else:
                raise TypeError(f"Unsupported turn type: {type(turn).__name__}")
        payload["contents"] = contents

        if tools:
            payload["tools"] = [{"functionDeclarations": [_encode_tool(t) for t in tools]}]
        generation: dict[str, Any] = {}
        if self.temperature is not None:
            generation["temperature"] = self.temperature
        if self.max_tokens is not None:
            generation["maxOutputTokens"] = self.max_tokens
        if generation:
            payload["generationConfig"] = generation
        return payload

    def parse_response(self, data: dict[str, Any]) -> AssistantTurn:
        text, calls = _read_candidate(data)
        return AssistantTurn(text="".join(text), tool_calls=tuple(calls))

    def consume_stream(
        self,
        events: Iterator[dict[str, Any]],
        handler: StreamHandler,
    ) -> tuple[str, list[ToolCall]]:
        text: list[str] = []
        pending = ToolCallAccumulator()
        index = 0
        for event in events:
            tokens, calls = _read_candidate(event)
            for token in tokens:
                text.append(token)
                handler.on_token(token)
            for call in calls:
                pending.start(index, call.id, call.name)
                pending.set_arguments(index, call.arguments)
                index += 1
        return "".join(text), pending.finish()


def _read_candidate(data: dict[str, Any]) -> tuple[list[str], list[ToolCall]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return [], []
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text: list[str] = []
    calls: list[ToolCall] = []
    for part in parts:
        if part.get("text"):
            text.append(part["text"])
        call = part.get("functionCall")
        if call:
            calls.append(ToolCall(id="", name=call.get("name", ""), arguments=call.get("args") or {}))
    return text, calls


def _encode_tool(tool: ToolDescriptor) -> dict[str, Any]:
    schema = tool.parameters
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": {
            "type": schema.type.upper(),
            "properties": {
                name: {"type": prop.type.upper(), "description": prop.description}
                for name, prop in schema.properties.items()
            },
            "required": list(schema.required),
        },
    }
