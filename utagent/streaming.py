"""Callbacks for streamed model output."""

from __future__ import annotations

import sys
from typing import Protocol, TextIO, runtime_checkable

from utagent.messages import AssistantTurn, ToolCall


@runtime_checkable
class StreamHandler(Protocol):
    def on_token(self, token: str) -> None: ...

    def on_tool_call(self, call: ToolCall) -> None: ...

    def on_complete(self, text: str, tool_calls: tuple[ToolCall, ...]) -> None: ...

    def on_error(self, error: Exception) -> None: ...


class NullStreamHandler:
    def on_token(self, token: str) -> None:
        pass

    def on_tool_call(self, call: ToolCall) -> None:
        pass

    def on_complete(self, text: str, tool_calls: tuple[ToolCall, ...]) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


class ConsoleStreamHandler(NullStreamHandler):
    """Echo tokens to a text stream as they arrive."""

    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out or sys.stdout

    def on_token(self, token: str) -> None:
        self.out.write(token)
        self.out.flush()

    def on_tool_call(self, call: ToolCall) -> None:
        self.out.write(f"\n[tool] {call.name}({call.arguments_json()})\n")
        self.out.flush()

    def on_complete(self, text: str, tool_calls: tuple[ToolCall, ...]) -> None:
        if text:
            self.out.write("\n")
            self.out.flush()


class CollectingStreamHandler:
    """Accumulate a streamed response, optionally forwarding to another handler.

    Callbacks arrive sequentially on the reading thread; read ``turn`` or
    ``error`` only after the stream has finished.
    """

    def __init__(self, forward: StreamHandler | None = None) -> None:
        self.forward = forward
        self.tokens: list[str] = []
        self.tool_calls: list[ToolCall] = []
        self.turn: AssistantTurn | None = None
        self.error: Exception | None = None

    def on_token(self, token: str) -> None:
        self.tokens.append(token)
        if self.forward is not None:
            self.forward.on_token(token)

    def on_tool_call(self, call: ToolCall) -> None:
        self.tool_calls.append(call)
        if self.forward is not None:
            self.forward.on_tool_call(call)

    def on_complete(self, text: str, tool_calls: tuple[ToolCall, ...]) -> None:
        self.turn = AssistantTurn(text=text, tool_calls=tool_calls)
        if self.forward is not None:
            self.forward.on_complete(text, tool_calls)

    def on_error(self, error: Exception) -> None:
        self.error = error
        if self.forward is not None:
            self.forward.on_error(error)

    @property
    def text(self) -> str:
        return "".join(self.tokens)
