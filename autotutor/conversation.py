from __future__ import annotations

from autotutor.errors import InvalidInput
from autotutor.schemas import ChatTurn, Role


class ConversationManager:
    """Full chat history for display, plus a bounded recent window for the next prompt."""

    def __init__(self, *, window: int = 10) -> None:
        if window < 1:
            raise ValueError("window must be at least 1")
        self.window = window
        self._turns: list[ChatTurn] = []

    @property
    def history(self) -> list[ChatTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append_user(self, text: str) -> ChatTurn:
        if not text or not text.strip():
            raise InvalidInput("Message is empty.")
        return self._append(Role.user, text)

    def append_assistant(self, text: str) -> ChatTurn:
        return self._append(Role.assistant, text or "")

    def window_for_prompt(self) -> list[ChatTurn]:
        return self._turns[-self.window :]

    def last_assistant(self) -> ChatTurn | None:
        for turn in reversed(self._turns):
            if turn.role is Role.assistant:
                return turn
        return None

    def clear(self) -> None:
        self._turns = []

    def _append(self, role: Role, text: str) -> ChatTurn:
        turn = ChatTurn(role=role, content=text)
        self._turns.append(turn)
        return turn
