from __future__ import annotations

from autotutor.schemas import LessonRecord, QuizItem


def failed_lesson_text(topic: str) -> str:
    return f'Lesson generation failed for "{topic}".'


def fallback_quiz(topic: str) -> list[QuizItem]:
    return [
        QuizItem(
            question=f"What is {topic}?",
            options=["A function", "A concept", "A library"],
            correctOption="A concept",
        ),
        QuizItem(
            question=f"Why is {topic} important?",
            options=["For styling", "For organization", "For memory"],
            correctOption="For organization",
        ),
    ]


def synthesize(topic: str, raw_text: str) -> LessonRecord:
    """
    Placeholder lesson for when the model output could not be normalized.
    The raw text (if any) is shown as the lesson so the user still sees what came back.
    """
    lesson = raw_text if raw_text and raw_text.strip() else failed_lesson_text(topic)
    summary = f"{topic} helps developers write clean and maintainable code."
    return LessonRecord(topic=topic, lesson=lesson, quiz=fallback_quiz(topic), summary=summary)
