from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator

from pydantic import ValidationError

from autotutor.fallback import fallback_quiz
from autotutor.schemas import LessonRecord, QuizItem

logger = logging.getLogger(__name__)

_CLOSER_FOR = {"{": "}", "[": "]"}
# Bounds the bracket scan so bracket-heavy text stays linear.
_MAX_CANDIDATES = 64


@dataclass(frozen=True)
class NormalizationFailure:
    """The model text could not be turned into a lesson. Carries the raw text for the fallback."""

    raw: str
    reason: str


def normalize(raw: str, *, topic: str = "") -> LessonRecord | NormalizationFailure:
    """
    Turn raw model output into a validated LessonRecord.

    Accepts:
    - a bare JSON object
    - JSON wrapped in prose or ```json fences
    Success requires a non-empty `lesson`, a `quiz` (coerced to a list) and a
    non-empty `summary`. Anything else is a NormalizationFailure.
    """
    if not raw or not raw.strip():
        return NormalizationFailure(raw=raw or "", reason="empty response")

    data = _extract_object(raw)
    if data is None:
        return NormalizationFailure(raw=raw, reason="no JSON object found")

    lesson = data.get("lesson")
    if not isinstance(lesson, str) or not lesson.strip():
        return NormalizationFailure(raw=raw, reason="missing or empty 'lesson'")

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return NormalizationFailure(raw=raw, reason="missing or empty 'summary'")

    quiz = data.get("quiz")
    # An empty list is accepted; any other falsy value counts as missing.
    if quiz is None or (not isinstance(quiz, list) and not quiz):
        return NormalizationFailure(raw=raw, reason="missing 'quiz'")

    items = _coerce_quiz(quiz)
    if isinstance(quiz, list) and quiz and not items:
        logger.warning("No usable quiz items for %r; substituting the placeholder quiz.", topic)
        items = fallback_quiz(topic)
    return LessonRecord(topic=topic, lesson=lesson, quiz=items, summary=summary)


def _coerce_quiz(value: Any) -> list[QuizItem]:
    if not isinstance(value, list):
        return []
    items: list[QuizItem] = []
    for i, entry in enumerate(value):
        try:
            items.append(QuizItem.model_validate(entry))
        except ValidationError as e:
            logger.warning("Dropping malformed quiz item %d: %s", i, e.errors(include_url=False))
    return items


def _loads(text: str) -> Any:
    # Deeply nested input makes the decoder raise RecursionError rather than ValueError.
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def _extract_object(raw: str) -> dict[str, Any] | None:
    parsed = _loads(raw)
    if isinstance(parsed, dict):
        return parsed

    for block in _balanced_blocks(raw):
        parsed = _loads(block)
        if isinstance(parsed, dict):
            return parsed

    # Last resort for truncated or oddly nested output: first "{" to last "}".
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last > first:
        parsed = _loads(raw[first : last + 1])
        if isinstance(parsed, dict):
            return parsed
    return None


def _balanced_blocks(text: str) -> Iterator[str]:
    """
    Yield balanced {...} / [...] blocks in order of their opening bracket.
    Only the first _MAX_CANDIDATES openers are tried.
    """
    tried = 0
    for start, ch in enumerate(text):
        if ch not in _CLOSER_FOR:
            continue
        if tried >= _MAX_CANDIDATES:
            return
        tried += 1
        end = _match_close(text, start)
        if end is not None:
            yield text[start : end + 1]


def _match_close(text: str, start: int) -> int | None:
    # Brackets inside JSON string literals do not count.
    stack: list[str] = []
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSER_FOR:
            stack.append(_CLOSER_FOR[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i
    return None
