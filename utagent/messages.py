"""Conversation turns, tool calls and tool descriptors.

Every value here is immutable. Absent assistant text and absent tool-call
ids are absorbed at construction so that adapters and the context manager
never see ``None`` where a string is expected.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union


def new_call_id() -> str:
    return "call_" + uuid.uuid4().hex[:24]


@dataclass(frozen=True)
class ToolCall:
    """A model's request to invoke one tool."""

    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            object.__setattr__(self, "id", new_call_id())
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments or {})))

    def arguments_json(self) -> str:
        return json.dumps(dict(self.arguments))


@dataclass(frozen=True)
class SystemTurn:
    role: ClassVar[str] = "system"
    text: str


@dataclass(frozen=True)
class UserTurn:
    role: ClassVar[str] = "user"
    text: str


@dataclass(frozen=True)
class AssistantTurn:
    """Model output: text (never None) plus zero or more tool calls."""

    role: ClassVar[str] = "assistant"
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()

    def __post_init__(self) -> None:
        if self.text is None:
            object.__setattr__(self, "text", "")
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls or ()))

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def text_only(cls, text: str | None) -> "AssistantTurn":
        return cls(text=text or "")


@dataclass(frozen=True)
class ToolResultTurn:
    """Outcome of one tool call, correlated by ``tool_call_id``."""

    role: ClassVar[str] = "tool"
    tool_call_id: str
    name: str
    text: str

    @classmethod
    def error(cls, call: ToolCall, message: str) -> "ToolResultTurn":
        return cls(tool_call_id=call.id, name=call.name, text=f"Error: {message}")


Turn = Union[SystemTurn, UserTurn, AssistantTurn, ToolResultTurn]


@dataclass(frozen=True)
class PropertySchema:
    type: str
    description: str = ""

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": self.type, "description": self.description}


@dataclass(frozen=True)
class ParameterSchema:
    properties: Mapping[str, PropertySchema] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    type: str = "object"

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "required", tuple(self.required))

    def to_json_schema(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "properties": {name: prop.to_json_schema() for name, prop in self.properties.items()},
            "required": list(self.required),
        }


@dataclass(frozen=True)
class ToolDescriptor:
    """Provider-neutral description of a tool exposed to the model."""

    name: str
    description: str
    parameters: ParameterSchema = field(default_factory=ParameterSchema)
