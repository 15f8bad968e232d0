import asyncio
import json
import unittest

from autotutor.errors import InvalidInput, RequestInFlight, SpeechError, TransportError
from autotutor.prompts import CHAT_ERROR_REPLY, CHAT_SYSTEM, EMPTY_REPLY, LESSON_SYSTEM
from autotutor.quiz import QuizPhase
from autotutor.schemas import QuizItem, Role, SessionSnapshot
from autotutor.session_store import InMemorySessionStore
from autotutor.tutor import TutorClient

KEY = "autotutor-progress"


def _lesson_json(lesson="Recursion is a function calling itself.", quiz=None, summary="Base cases stop it."):
    if quiz is None:
        quiz = [
            {"q": "What stops recursion?", "a": ["A base case", "A loop", "A class"], "correct": "A base case"},
            {"q": "Recursion uses the...", "a": ["heap", "call stack", "disk"], "correct": "call stack"},
        ]
    return json.dumps({"lesson": lesson, "quiz": quiz, "summary": summary})


class FakeTransport:
    """Replies from a queue; an Exception in the queue is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class BlockingTransport:
    """Holds every request until release() is called."""

    def __init__(self, reply=""):
        self.reply = reply
        self.started = asyncio.Event()
        self._release = asyncio.Event()
        self.requests = []

    def release(self):
        self._release.set()

    async def complete(self, request):
        self.requests.append(request)
        self.started.set()
        await self._release.wait()
        return self.reply


class FakeSpeaker:
    def __init__(self, error=None):
        self.spoken = []
        self.stopped = 0
        self.error = error

    async def speak(self, text):
        self.spoken.append(text)
        if self.error:
            raise self.error

    def stop(self):
        self.stopped += 1


class TestLessonGeneration(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()
        self.speaker = FakeSpeaker()

    def _tutor(self, transport):
        return TutorClient(transport, self.store, speaker=self.speaker, session_key=KEY)

    async def test_generates_and_persists_lesson(self):
        tutor = self._tutor(FakeTransport(_lesson_json()))
        record = await tutor.generate_lesson("  Recursion ")

        self.assertEqual(record.topic, "Recursion")
        self.assertEqual(len(record.quiz), 2)
        self.assertEqual(tutor.quiz.phase, QuizPhase.answering)
        self.assertFalse(tutor.lesson_loading)

        snap = self.store.load(KEY)
        self.assertEqual(snap.topic, "Recursion")
        self.assertEqual(snap.quiz, record.quiz)
        self.assertIsNone(snap.selections)
        self.assertIsNone(snap.score)

    async def test_lesson_request_shape(self):
        transport = FakeTransport(_lesson_json())
        await self._tutor(transport).generate_lesson("Closures")

        (request,) = transport.requests
        self.assertEqual(request.systemPrompt, LESSON_SYSTEM)
        self.assertEqual(request.maxTokens, 800)
        self.assertEqual(request.temperature, 0.7)
        self.assertEqual(len(request.history), 1)
        self.assertEqual(request.history[0].role, Role.user)
        self.assertIn('"Closures"', request.history[0].content)

    async def test_unparseable_reply_uses_fallback(self):
        tutor = self._tutor(FakeTransport("Sorry, I can't help with that."))
        with self.assertLogs("autotutor.tutor", level="WARNING"):
            record = await tutor.generate_lesson("Recursion")

        self.assertEqual(record.lesson, "Sorry, I can't help with that.")
        self.assertEqual(len(record.quiz), 2)
        self.assertEqual(self.store.load(KEY).lesson, record.lesson)

    async def test_deeply_nested_reply_uses_fallback(self):
        raw = "Here: " + "[" * 3000 + "]" * 3000
        tutor = self._tutor(FakeTransport(raw))
        with self.assertLogs("autotutor.tutor", level="WARNING"):
            record = await tutor.generate_lesson("Recursion")

        self.assertEqual(record.lesson, raw)
        self.assertEqual(len(record.quiz), 2)
        self.assertEqual(tutor.quiz.phase, QuizPhase.answering)

    async def test_empty_topic_is_rejected_without_a_request(self):
        transport = FakeTransport(_lesson_json())
        tutor = self._tutor(transport)
        for topic in ("", "   "):
            with self.assertRaises(InvalidInput):
                await tutor.generate_lesson(topic)
        self.assertEqual(transport.requests, [])

    async def test_transport_error_keeps_previous_lesson(self):
        tutor = self._tutor(FakeTransport(_lesson_json(), TransportError("boom")))
        first = await tutor.generate_lesson("Recursion")
        tutor.select_option(0, "A base case")

        with self.assertRaises(TransportError):
            await tutor.generate_lesson("Closures")

        self.assertEqual(tutor.lesson, first)
        self.assertEqual(tutor.quiz.selections, {0: "A base case"})
        self.assertFalse(tutor.lesson_loading)
        self.assertEqual(self.store.load(KEY).topic, "Recursion")

    async def test_second_lesson_request_is_rejected_while_pending(self):
        transport = BlockingTransport(_lesson_json())
        tutor = self._tutor(transport)
        pending = asyncio.create_task(tutor.generate_lesson("Recursion"))
        await transport.started.wait()

        self.assertTrue(tutor.lesson_loading)
        with self.assertRaises(RequestInFlight):
            await tutor.generate_lesson("Closures")

        transport.release()
        record = await pending
        self.assertEqual(record.topic, "Recursion")
        self.assertEqual(len(transport.requests), 1)

    async def test_new_lesson_replaces_quiz_and_clears_chat(self):
        tutor = self._tutor(FakeTransport(_lesson_json(), "a reply", _lesson_json(summary="New.")))
        await tutor.generate_lesson("Recursion")
        tutor.select_option(0, "A base case")
        tutor.submit_quiz()
        await tutor.send_chat_message("hi", speak=False)

        await tutor.generate_lesson("Recursion again")

        self.assertEqual(tutor.quiz.phase, QuizPhase.answering)
        self.assertEqual(tutor.quiz.selections, {})
        self.assertEqual(tutor.conversation.history, [])
        self.assertEqual(tutor.lesson.summary, "New.")


class TestChat(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()
        self.speaker = FakeSpeaker()

    async def test_request_carries_window_plus_new_turn(self):
        transport = FakeTransport()
        tutor = TutorClient(transport, self.store, speaker=self.speaker)
        for i in range(6):
            await tutor.send_chat_message(f"question {i}", speak=False)
        transport.requests.clear()
        transport.replies = ["final answer"]

        reply = await tutor.send_chat_message("question 6", speak=False)

        (request,) = transport.requests
        self.assertEqual(request.systemPrompt, CHAT_SYSTEM)
        self.assertEqual(request.maxTokens, 600)
        self.assertEqual(request.temperature, 0.6)
        self.assertEqual(len(request.history), 11)
        self.assertEqual(request.history[-1].content, "question 6")
        self.assertEqual(request.history[0].content, "question 1")
        self.assertEqual(reply.content, "final answer")
        self.assertEqual(len(tutor.conversation), 14)

    async def test_blank_message_is_rejected(self):
        transport = FakeTransport()
        tutor = TutorClient(transport, self.store)
        with self.assertRaises(InvalidInput):
            await tutor.send_chat_message("   ")
        self.assertEqual(transport.requests, [])
        self.assertEqual(tutor.conversation.history, [])

    async def test_empty_reply_is_replaced_with_placeholder(self):
        transport = FakeTransport("", "ok")
        tutor = TutorClient(transport, self.store, speaker=self.speaker)

        first = await tutor.send_chat_message("hi")
        self.assertEqual(first.content, EMPTY_REPLY)
        self.assertEqual(self.speaker.spoken, [])

        await tutor.send_chat_message("again", speak=False)
        history = transport.requests[1].history
        self.assertEqual(
            [(t.role, t.content) for t in history],
            [(Role.user, "hi"), (Role.assistant, EMPTY_REPLY), (Role.user, "again")],
        )

    async def test_whitespace_reply_is_replaced_with_placeholder(self):
        tutor = TutorClient(FakeTransport("  \n "), self.store)
        reply = await tutor.send_chat_message("hi", speak=False)
        self.assertEqual(reply.content, EMPTY_REPLY)
        self.assertEqual(tutor.conversation.history[-1].content, EMPTY_REPLY)

    async def test_transport_error_appends_diagnostic_reply(self):
        tutor = TutorClient(FakeTransport(TransportError("down")), self.store, speaker=self.speaker)
        with self.assertRaises(TransportError):
            await tutor.send_chat_message("hello")

        history = tutor.conversation.history
        self.assertEqual([t.role for t in history], [Role.user, Role.assistant])
        self.assertEqual(history[-1].content, CHAT_ERROR_REPLY)
        self.assertFalse(tutor.chat_loading)
        self.assertEqual(self.speaker.spoken, [])

    async def test_second_chat_rejected_while_pending(self):
        transport = BlockingTransport("It's an A.")
        tutor = TutorClient(transport, self.store)
        pending = asyncio.create_task(tutor.send_chat_message("What is A?", speak=False))
        await transport.started.wait()

        with self.assertRaises(RequestInFlight):
            await tutor.send_chat_message("What is B?", speak=False)

        transport.release()
        await pending
        self.assertEqual(len(transport.requests), 1)
        self.assertEqual(
            [(t.role, t.content) for t in tutor.conversation.history],
            [(Role.user, "What is A?"), (Role.assistant, "It's an A.")],
        )

    async def test_quiz_stays_usable_while_chat_is_pending(self):
        transport = FakeTransport(_lesson_json())
        tutor = TutorClient(transport, self.store)
        await tutor.generate_lesson("Recursion")
        blocking = BlockingTransport("sure")
        tutor.transport = blocking

        pending = asyncio.create_task(tutor.send_chat_message("explain", speak=False))
        await blocking.started.wait()
        tutor.select_option(1, "call stack")
        self.assertEqual(tutor.submit_quiz(), 1)

        blocking.release()
        await pending
        self.assertEqual(self.store.load(KEY).score, 1)

    async def test_reply_is_spoken(self):
        tutor = TutorClient(FakeTransport("spoken reply"), self.store, speaker=self.speaker)
        await tutor.send_chat_message("hi")
        self.assertEqual(self.speaker.spoken, ["spoken reply"])

    async def test_speak_false_skips_speech(self):
        tutor = TutorClient(FakeTransport("quiet"), self.store, speaker=self.speaker)
        await tutor.send_chat_message("hi", speak=False)
        self.assertEqual(self.speaker.spoken, [])

    async def test_speech_failure_is_not_fatal(self):
        speaker = FakeSpeaker(error=SpeechError("tts down"))
        tutor = TutorClient(FakeTransport("reply"), self.store, speaker=speaker)
        with self.assertLogs("autotutor.tutor", level="WARNING"):
            reply = await tutor.send_chat_message("hi")
        self.assertEqual(reply.content, "reply")
        self.assertEqual(len(tutor.conversation), 2)

    async def test_reply_after_reset_is_dropped(self):
        transport = BlockingTransport("late")
        tutor = TutorClient(transport, self.store)
        pending = asyncio.create_task(tutor.send_chat_message("hello", speak=False))
        await transport.started.wait()

        tutor.clear_chat()
        transport.release()
        reply = await pending

        self.assertEqual(reply.content, "late")
        self.assertEqual(tutor.conversation.history, [])

    async def test_clear_chat(self):
        tutor = TutorClient(FakeTransport("r"), self.store)
        await tutor.send_chat_message("hi", speak=False)
        tutor.clear_chat()
        self.assertEqual(tutor.state().messages, [])


class TestSessionLifecycle(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()

    async def test_quiz_progress_survives_restart(self):
        tutor = TutorClient(FakeTransport(_lesson_json()), self.store)
        await tutor.generate_lesson("Recursion")
        tutor.select_option(0, "A base case")
        tutor.select_option(1, "heap")
        self.assertEqual(tutor.submit_quiz(), 1)

        restored = TutorClient(FakeTransport(), self.store)
        self.assertTrue(restored.restore())

        self.assertEqual(restored.lesson, tutor.lesson)
        self.assertEqual(restored.quiz.selections, {0: "A base case", 1: "heap"})
        self.assertEqual(restored.quiz.score, 1)
        self.assertEqual(restored.quiz.phase, QuizPhase.graded)
        self.assertEqual(restored.conversation.history, [])

    async def test_restore_with_nothing_stored(self):
        tutor = TutorClient(FakeTransport(), self.store)
        self.assertFalse(tutor.restore())
        self.assertIsNone(tutor.lesson)

    async def test_restore_partial_progress(self):
        item = QuizItem(question="Q1", options=["x", "y", "z"], correctOption="y")
        self.store.save(KEY, SessionSnapshot(topic="T", lesson="L", quiz=[item], summary="S", selections={0: "x"}))

        tutor = TutorClient(FakeTransport(), self.store)
        tutor.restore()
        self.assertEqual(tutor.quiz.phase, QuizPhase.answering)
        self.assertEqual(tutor.quiz.selections, {0: "x"})

    async def test_selection_is_persisted(self):
        tutor = TutorClient(FakeTransport(_lesson_json()), self.store)
        await tutor.generate_lesson("Recursion")
        tutor.select_option(1, "call stack")
        self.assertEqual(self.store.load(KEY).selections, {1: "call stack"})

    async def test_invalid_selection_is_not_persisted(self):
        tutor = TutorClient(FakeTransport(_lesson_json()), self.store)
        await tutor.generate_lesson("Recursion")
        with self.assertRaises(InvalidInput):
            tutor.select_option(0, "nope")
        self.assertIsNone(self.store.load(KEY).selections)

    async def test_submit_without_lesson(self):
        tutor = TutorClient(FakeTransport(), self.store)
        self.assertIsNone(tutor.submit_quiz())

    async def test_reset_all_clears_everything(self):
        tutor = TutorClient(FakeTransport(_lesson_json(), "r"), self.store)
        await tutor.generate_lesson("Recursion")
        await tutor.send_chat_message("hi", speak=False)

        tutor.reset_all()

        state = tutor.state()
        self.assertIsNone(state.lesson)
        self.assertEqual(state.selections, {})
        self.assertIsNone(state.score)
        self.assertEqual(state.total, 0)
        self.assertEqual(state.messages, [])
        self.assertIsNone(self.store.load(KEY))

    async def test_listeners(self):
        events = []
        tutor = TutorClient(FakeTransport(_lesson_json()), self.store)
        remove = tutor.add_listener(events.append)

        await tutor.generate_lesson("Recursion")
        tutor.select_option(0, "A base case")
        self.assertEqual(events, ["busy", "busy", "lesson", "quiz"])

        remove()
        tutor.reset_all()
        self.assertEqual(events, ["busy", "busy", "lesson", "quiz"])

    async def test_state_reports_loading_flags(self):
        transport = BlockingTransport(_lesson_json())
        tutor = TutorClient(transport, self.store)
        pending = asyncio.create_task(tutor.generate_lesson("Recursion"))
        await transport.started.wait()

        state = tutor.state()
        self.assertTrue(state.lessonLoading)
        self.assertFalse(state.chatLoading)

        transport.release()
        await pending
        self.assertFalse(tutor.state().lessonLoading)


class TestSpeakLatest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()
        self.speaker = FakeSpeaker()

    async def test_nothing_to_speak(self):
        tutor = TutorClient(FakeTransport(), self.store, speaker=self.speaker)
        with self.assertRaises(InvalidInput):
            await tutor.speak_latest()

    async def test_speaks_lesson_when_no_reply(self):
        tutor = TutorClient(FakeTransport(_lesson_json()), self.store, speaker=self.speaker)
        record = await tutor.generate_lesson("Recursion")
        self.assertEqual(await tutor.speak_latest(), record.lesson)
        self.assertEqual(self.speaker.spoken, [record.lesson])

    async def test_speaks_latest_reply(self):
        tutor = TutorClient(FakeTransport("first", "second"), self.store, speaker=self.speaker)
        await tutor.send_chat_message("a", speak=False)
        await tutor.send_chat_message("b", speak=False)
        self.assertEqual(await tutor.speak_latest(), "second")

    async def test_stop_speaking(self):
        tutor = TutorClient(FakeTransport(), self.store, speaker=self.speaker)
        tutor.stop_speaking()
        self.assertEqual(self.speaker.stopped, 1)


if __name__ == "__main__":
    unittest.main()
