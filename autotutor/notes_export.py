from __future__ import annotations

from io import BytesIO

from docx import Document

from autotutor.schemas import ChatTurn, LessonRecord, Role

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def build_notes_docx(
    lesson: LessonRecord | None,
    *,
    selections: dict[int, str] | None = None,
    score: int | None = None,
    messages: list[ChatTurn] | None = None,
) -> BytesIO:
    selections = selections or {}
    doc = Document()
    doc.add_heading("AutoTutor Study Notes", level=1)

    if lesson is None:
        doc.add_paragraph("(No lesson generated yet)")
    else:
        doc.add_paragraph(f"Topic: {lesson.topic}")

        doc.add_heading("Lesson", level=2)
        doc.add_paragraph(lesson.lesson)

        doc.add_heading("Quiz", level=2)
        if lesson.quiz:
            for idx, item in enumerate(lesson.quiz):
                doc.add_paragraph(f"Q{idx + 1}. {item.question}")
                for opt in item.options:
                    doc.add_paragraph(opt, style="List Bullet")
                chosen = selections.get(idx)
                if chosen:
                    doc.add_paragraph(f"Your answer: {chosen}")
                if score is not None:
                    doc.add_paragraph(f"Correct answer: {item.correctOption}")
                doc.add_paragraph("")  # spacer
            if score is not None:
                doc.add_paragraph(f"Your Score: {score} / {len(lesson.quiz)}")
        else:
            doc.add_paragraph("(No quiz questions)")

        doc.add_heading("Summary", level=2)
        doc.add_paragraph(lesson.summary)

    if messages:
        doc.add_heading("Chat transcript", level=2)
        for turn in messages:
            text = turn.content.strip()
            if not text:
                continue
            prefix = "You:" if turn.role is Role.user else "Tutor:"
            doc.add_paragraph(f"{prefix} {text}")

    bio = BytesIO()
    doc.save(bio)
    bio.seek(0)
    return bio
