from __future__ import annotations

import logging
from typing import Callable

from autotutor.conversation import ConversationManager
from autotutor.errors import InvalidInput, RequestInFlight, SpeechError
from autotutor.fallback import synthesize
from autotutor.normalizer import NormalizationFailure, normalize
from autotutor.prompts import (
    CHAT_ERROR_REPLY,
    CHAT_MAX_TOKENS,
    CHAT_SYSTEM,
    CHAT_TEMPERATURE,
    EMPTY_REPLY,
    LESSON_MAX_TOKENS,
    LESSON_SYSTEM,
    LESSON_TEMPERATURE,
    lesson_user_prompt,
)
from autotutor.quiz import QuizSession
from autotutor.schemas import ChatTurn, CompletionRequest, LessonRecord, Role, SessionSnapshot, TutorState
from autotutor.session_store import SessionStore
from autotutor.speech import Speaker
from autotutor.transport import Transport

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class TutorClient:
    """
    Owns the active lesson, its quiz and the follow-up chat for one topic.

    At most one lesson request and one chat request may be outstanding at a time;
    a second call of the same kind raises RequestInFlight without reaching the transport.
    Listeners are called with "busy", "lesson", "quiz", "chat" or "reset" after each change.
    """

    def __init__(
        self,
        transport: Transport,
        store: SessionStore,
        *,
        speaker: Speaker | None = None,
        session_key: str = "autotutor-progress",
        chat_window: int = 10,
    ) -> None:
        self.transport = transport
        self.store = store
        self.speaker = speaker
        self.session_key = session_key

        self.lesson: LessonRecord | None = None
        self.quiz = QuizSession(on_change=self._on_quiz_change)
        self.conversation = ConversationManager(window=chat_window)

        self._lesson_pending = False
        self._chat_pending = False
        # Bumped whenever the conversation is discarded, so late chat replies are dropped.
        self._conversation_epoch = 0
        self._listeners: list[Listener] = []

    @property
    def lesson_loading(self) -> bool:
        return self._lesson_pending

    @property
    def chat_loading(self) -> bool:
        return self._chat_pending

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def restore(self) -> bool:
        """Rehydrate lesson + quiz progress from the store. Chat history is never restored."""
        snap = self.store.load(self.session_key)
        if snap is None:
            return False
        self.lesson = LessonRecord(topic=snap.topic, lesson=snap.lesson, quiz=snap.quiz, summary=snap.summary)
        self.quiz.load(snap.quiz, snap.selections, snap.score)
        self._discard_conversation()
        logger.info("Restored session for topic %r (%d quiz items).", snap.topic, len(snap.quiz))
        self._emit("lesson")
        return True

    # --- lesson ---

    async def generate_lesson(self, topic: str) -> LessonRecord:
        topic = (topic or "").strip()
        if not topic:
            raise InvalidInput("Please enter a topic first!")
        if self._lesson_pending:
            raise RequestInFlight("A lesson is already being generated.")

        request = CompletionRequest(
            systemPrompt=LESSON_SYSTEM,
            history=[ChatTurn(role=Role.user, content=lesson_user_prompt(topic))],
            maxTokens=LESSON_MAX_TOKENS,
            temperature=LESSON_TEMPERATURE,
        )

        self._lesson_pending = True
        self._emit("busy")
        try:
            raw = await self.transport.complete(request)
        finally:
            self._lesson_pending = False
            self._emit("busy")

        result = normalize(raw, topic=topic)
        if isinstance(result, NormalizationFailure):
            logger.warning("Could not parse lesson for %r (%s); using fallback.", topic, result.reason)
            record = synthesize(topic, result.raw)
        else:
            record = result

        # Replace lesson, quiz and chat together only once new content exists.
        self.lesson = record
        self.quiz.load(record.quiz)
        self._discard_conversation()
        self._persist()
        logger.info("Lesson ready for %r with %d quiz items.", topic, len(record.quiz))
        self._emit("lesson")
        return record

    # --- quiz ---

    def select_option(self, index: int, option: str) -> None:
        self.quiz.select(index, option)

    def submit_quiz(self) -> int | None:
        return self.quiz.submit()

    # --- chat ---

    async def send_chat_message(self, text: str, *, speak: bool = True) -> ChatTurn:
        if self._chat_pending:
            raise RequestInFlight("Still waiting for the previous reply.")

        window = self.conversation.window_for_prompt()
        user_turn = self.conversation.append_user(text)
        epoch = self._conversation_epoch
        request = CompletionRequest(
            systemPrompt=CHAT_SYSTEM,
            history=[*window, user_turn],
            maxTokens=CHAT_MAX_TOKENS,
            temperature=CHAT_TEMPERATURE,
        )

        self._chat_pending = True
        self._emit("chat")
        try:
            raw = await self.transport.complete(request)
        except Exception:
            if epoch == self._conversation_epoch:
                self.conversation.append_assistant(CHAT_ERROR_REPLY)
            raise
        finally:
            self._chat_pending = False
            self._emit("chat")

        if epoch != self._conversation_epoch:
            logger.debug("Conversation was reset while waiting; dropping reply.")
            return ChatTurn(role=Role.assistant, content=raw)

        if not raw or not raw.strip():
            logger.warning("Completion endpoint returned an empty reply.")
            reply = self.conversation.append_assistant(EMPTY_REPLY)
            self._emit("chat")
            return reply

        reply = self.conversation.append_assistant(raw)
        self._emit("chat")
        if speak:
            await self._speak(raw)
        return reply

    def clear_chat(self) -> None:
        self._discard_conversation()
        self._emit("chat")

    # --- speech ---

    async def speak_latest(self) -> str:
        """Replay the latest assistant reply, or the lesson when there is none."""
        last = self.conversation.last_assistant()
        if last is not None and last.content:
            text = last.content
        elif self.lesson is not None:
            text = self.lesson.lesson
        else:
            raise InvalidInput("No assistant response or lesson to speak.")
        if self.speaker is not None:
            await self.speaker.speak(text)
        return text

    def stop_speaking(self) -> None:
        if self.speaker is not None:
            self.speaker.stop()

    async def _speak(self, text: str) -> None:
        if self.speaker is None:
            return
        try:
            await self.speaker.speak(text)
        except SpeechError as e:
            logger.warning("Text-to-speech failed: %s", e)

    # --- reset / state ---

    def reset_all(self) -> None:
        self.lesson = None
        self.quiz.reset()
        self._discard_conversation()
        self._emit("reset")

    def state(self) -> TutorState:
        return TutorState(
            lesson=self.lesson,
            selections=self.quiz.selections,
            score=self.quiz.score,
            total=len(self.quiz.items),
            messages=self.conversation.history,
            lessonLoading=self._lesson_pending,
            chatLoading=self._chat_pending,
        )

    def _discard_conversation(self) -> None:
        self.conversation.clear()
        self._conversation_epoch += 1

    def _on_quiz_change(self, event: str) -> None:
        if event == "reset":
            self.store.delete(self.session_key)
        else:
            self._persist()
        self._emit("quiz")

    def _persist(self) -> None:
        if self.lesson is None:
            return
        snapshot = SessionSnapshot(
            topic=self.lesson.topic,
            lesson=self.lesson.lesson,
            quiz=self.quiz.items,
            summary=self.lesson.summary,
            selections=self.quiz.selections or None,
            score=self.quiz.score,
        )
        self.store.save(self.session_key, snapshot)

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)
