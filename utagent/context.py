"""Bounded, always-valid conversation history.

The manager keeps three properties true after every mutation:

* at most one system turn, and it sits at index 0;
* the first non-system turn is a user turn;
* the history never holds more than ``max_turns`` turns.

Trimming drops the oldest turns after the first user turn. If that leaves the
history starting with an assistant or tool turn, a placeholder user turn is
inserted so that every protocol accepts the sequence.
"""

from __future__ import annotations

import logging
from typing import Iterable

from utagent.messages import AssistantTurn, SystemTurn, ToolCall, ToolResultTurn, Turn, UserTurn

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 20
TRUNCATION_PLACEHOLDER = "[Context truncated due to length limit. Please continue.]"


class ContextManager:
    """Owns the turn list for one agent run."""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 2:
            raise ValueError(f"max_turns must be at least 2, got {max_turns}")
        self.max_turns = max_turns
        self._turns: list[Turn] = []

    # -- mutation ------------------------------------------------------

    def set_system(self, text: str) -> None:
        turn = SystemTurn(text)
        if self._turns and isinstance(self._turns[0], SystemTurn):
            self._turns[0] = turn
        else:
            self._turns.insert(0, turn)
        self._trim()

    def add_user(self, text: str) -> None:
        self.add(UserTurn(text))

    def add_assistant(self, text: str | None, tool_calls: Iterable[ToolCall] = ()) -> None:
        self.add(AssistantTurn(text=text or "", tool_calls=tuple(tool_calls)))

    def add_tool_result(self, tool_call_id: str, name: str, text: str) -> None:
        self.add(ToolResultTurn(tool_call_id=tool_call_id, name=name, text=text))

    def add(self, turn: Turn) -> None:
        if isinstance(turn, SystemTurn):
            self.set_system(turn.text)
            return
        self._turns.append(turn)
        self._trim()

    def clear(self) -> None:
        """Drop everything except the system turn."""
        system = self._system_turn()
        self._turns = [system] if system is not None else []

    def clear_all(self) -> None:
        self._turns = []

    # -- queries -------------------------------------------------------

    def messages(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def snapshot(self) -> "ContextManager":
        copy = ContextManager(self.max_turns)
        copy._turns = list(self._turns)
        return copy

    @property
    def system_text(self) -> str | None:
        system = self._system_turn()
        return system.text if system is not None else None

    @property
    def size(self) -> int:
        return len(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def is_empty(self) -> bool:
        return not self._turns

    @property
    def has_only_system(self) -> bool:
        return len(self._turns) == 1 and isinstance(self._turns[0], SystemTurn)

    def estimated_tokens(self) -> int:
        """Rough token count (four characters per token)."""
        return sum(len(t.text) // 4 + 1 for t in self._turns if t.text)

    # -- internals -----------------------------------------------------

    def _system_turn(self) -> SystemTurn | None:
        if self._turns and isinstance(self._turns[0], SystemTurn):
            return self._turns[0]
        return None

    def _first_user_index(self) -> int:
        for i, turn in enumerate(self._turns):
            if isinstance(turn, UserTurn):
                return i
        return -1

    def _removable_index(self) -> int:
        first_user = self._first_user_index()
        start = first_user + 1 if first_user >= 0 else 1
        for i in range(start, len(self._turns)):
            if not isinstance(self._turns[i], SystemTurn):
                return i
        return -1

    def _trim(self) -> None:
        if not self._sequence_is_valid():
            self._insert_placeholder()
        while len(self._turns) > self.max_turns:
            idx = self._removable_index()
            if idx < 0:
                break
            removed = self._turns.pop(idx)
            logger.debug("CONTEXT_TRIM role=%s chars=%d", removed.role, len(removed.text))
            if not self._sequence_is_valid():
                self._insert_placeholder()

    def _sequence_is_valid(self) -> bool:
        start = 1 if self._system_turn() is not None else 0
        if start >= len(self._turns):
            return True
        return isinstance(self._turns[start], UserTurn)

    def _insert_placeholder(self) -> None:
        start = 1 if self._system_turn() is not None else 0
        self._turns.insert(start, UserTurn(TRUNCATION_PLACEHOLDER))
        logger.warning("CONTEXT_TRUNCATED placeholder user turn inserted (size=%d)", len(self._turns))
