from __future__ import annotations

from enum import Enum
from typing import Callable

from autotutor.errors import InvalidInput
from autotutor.schemas import QuizItem


class QuizPhase(str, Enum):
    empty = "empty"
    answering = "answering"
    graded = "graded"


class QuizSession:
    """
    Quiz items, per-question selections and the score.

    Empty -> (load) -> Answering -> (submit) -> Graded -> (reset) -> Empty.
    Once graded, selections are frozen until reset.
    `on_change` is called with "select", "submit" or "reset" after each mutation.
    """

    def __init__(self, on_change: Callable[[str], None] | None = None) -> None:
        self._on_change = on_change
        self._items: list[QuizItem] = []
        self._selections: dict[int, str] = {}
        self._score: int | None = None

    @property
    def items(self) -> list[QuizItem]:
        return list(self._items)

    @property
    def selections(self) -> dict[int, str]:
        return dict(self._selections)

    @property
    def score(self) -> int | None:
        return self._score

    @property
    def phase(self) -> QuizPhase:
        if self._score is not None:
            return QuizPhase.graded
        if self._items:
            return QuizPhase.answering
        return QuizPhase.empty

    def load(
        self,
        items: list[QuizItem],
        selections: dict[int, str] | None = None,
        score: int | None = None,
    ) -> None:
        """Replace the quiz without signalling; callers persist the whole snapshot themselves."""
        self._items = list(items)
        self._selections = {
            i: opt for i, opt in (selections or {}).items() if 0 <= i < len(self._items)
        }
        self._score = score if self._items else None

    def select(self, index: int, option: str) -> None:
        if self._score is not None:
            return
        if not 0 <= index < len(self._items):
            raise InvalidInput(f"No quiz question at index {index}.")
        if option not in self._items[index].options:
            raise InvalidInput(f"{option!r} is not an option for question {index}.")
        self._selections[index] = option
        self._notify("select")

    def submit(self) -> int | None:
        if not self._items:
            return None
        if self._score is not None:
            return self._score
        self._score = sum(
            1 for i, item in enumerate(self._items) if self._selections.get(i) == item.correctOption
        )
        self._notify("submit")
        return self._score

    def reset(self) -> None:
        self._items = []
        self._selections = {}
        self._score = None
        self._notify("reset")

    def _notify(self, event: str) -> None:
        if self._on_change is not None:
            self._on_change(event)
