from __future__ import annotations

from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class Role(str, Enum):
    user = "user"
    assistant = "assistant"


class ChatTurn(BaseModel):
    role: Role
    content: str


class QuizItem(BaseModel):
    """
    One multiple-choice question. Accepts the short keys the lesson prompt asks
    the model for ({"q", "a", "correct"}) as well as the field names.
    """

    question: str = Field(..., min_length=1, validation_alias=AliasChoices("question", "q"))
    options: list[str] = Field(..., validation_alias=AliasChoices("options", "a"))
    correctOption: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("correctOption", "correct", "correct_option")
    )

    @field_validator("options", mode="before")
    @classmethod
    def _stringify_options(cls, v):
        if isinstance(v, list):
            return [x if isinstance(x, str) else str(x) for x in v if x is not None]
        return v

    @field_validator("options")
    @classmethod
    def _three_distinct(cls, v: list[str]) -> list[str]:
        if len(v) != 3:
            raise ValueError(f"expected exactly 3 options, got {len(v)}")
        if len(set(v)) != 3:
            raise ValueError("options must be distinct")
        return v

    @model_validator(mode="after")
    def _correct_is_an_option(self) -> "QuizItem":
        if self.correctOption not in self.options:
            raise ValueError(f"correctOption {self.correctOption!r} is not one of the options")
        return self


class LessonRecord(BaseModel):
    topic: str
    lesson: str
    quiz: list[QuizItem] = Field(default_factory=list)
    summary: str


class SessionSnapshot(BaseModel):
    topic: str
    lesson: str
    quiz: list[QuizItem] = Field(default_factory=list)
    summary: str
    selections: dict[int, str] | None = None
    score: int | None = None


class CompletionRequest(BaseModel):
    systemPrompt: str
    history: list[ChatTurn] = Field(default_factory=list)
    maxTokens: int = Field(600, gt=0)
    temperature: float = Field(0.6, ge=0.0, le=2.0)


class LessonRequest(BaseModel):
    topic: str = Field(..., min_length=1, description="Free-text topic to teach")


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    speak: bool = Field(True, description="Hand the reply to the speech output")


class VoiceTranscriptRequest(BaseModel):
    transcript: str = Field(..., min_length=1, description="Final transcript from speech recognition")


class QuizSelectRequest(BaseModel):
    index: int = Field(..., ge=0)
    option: str = Field(..., min_length=1)


class QuizSubmitResponse(BaseModel):
    score: int | None
    total: int


class ChatResponse(BaseModel):
    reply: ChatTurn
    messages: list[ChatTurn]


class TutorState(BaseModel):
    lesson: LessonRecord | None = None
    selections: dict[int, str] = Field(default_factory=dict)
    score: int | None = None
    total: int = 0
    messages: list[ChatTurn] = Field(default_factory=list)
    lessonLoading: bool = False
    chatLoading: bool = False
