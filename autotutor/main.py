from __future__ import annotations

import logging
from io import BytesIO

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from autotutor.config import load_settings
from autotutor.errors import InvalidInput, RequestInFlight, SpeechError, TransportError, TutorError
from autotutor.notes_export import DOCX_MEDIA_TYPE, build_notes_docx
from autotutor.schemas import (
    ChatRequest,
    ChatResponse,
    LessonRecord,
    LessonRequest,
    QuizSelectRequest,
    QuizSubmitResponse,
    TutorState,
    VoiceTranscriptRequest,
)
from autotutor.session_store import make_session_store
from autotutor.speech import make_speaker
from autotutor.transport import make_transport
from autotutor.tutor import TutorClient

logger = logging.getLogger(__name__)

app = FastAPI(title="AutoTutor API", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_tutor: TutorClient | None = None


def get_tutor() -> TutorClient:
    global _tutor
    if _tutor is None:
        settings = load_settings()
        try:
            transport = make_transport(settings)
        except RuntimeError as e:
            raise HTTPException(status_code=500, detail=str(e))
        _tutor = TutorClient(
            transport,
            make_session_store(settings),
            speaker=make_speaker(settings),
            session_key=settings.session_key,
            chat_window=settings.chat_window,
        )
        _tutor.restore()
    return _tutor


def _http_error(e: TutorError) -> HTTPException:
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, RequestInFlight):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, TransportError):
        return HTTPException(status_code=502, detail=f"Error connecting to the completion endpoint: {e}")
    if isinstance(e, SpeechError):
        return HTTPException(status_code=502, detail=f"Speech failed: {e}")
    return HTTPException(status_code=500, detail=str(e))


@app.get("/")
def root() -> dict:
    return {
        "ok": True,
        "service": "autotutor",
        "endpoints": [
            "/health",
            "/session",
            "/lesson",
            "/chat",
            "/chat/voice",
            "/chat/clear",
            "/quiz/select",
            "/quiz/submit",
            "/reset",
            "/speech/replay",
            "/speech/stop",
            "/speech/latest.mp3",
            "/session/download.docx",
        ],
        "docs": "/docs",
    }


@app.get("/health")
def health() -> dict:
    return {"ok": True}


# Stateful routes are async so every mutation runs on the event loop thread.


@app.get("/session", response_model=TutorState)
async def session_get(tutor: TutorClient = Depends(get_tutor)) -> TutorState:
    return tutor.state()


@app.post("/lesson", response_model=LessonRecord)
async def lesson_generate(req: LessonRequest, tutor: TutorClient = Depends(get_tutor)) -> LessonRecord:
    try:
        return await tutor.generate_lesson(req.topic)
    except TutorError as e:
        raise _http_error(e)


@app.post("/chat", response_model=ChatResponse)
async def chat_send(req: ChatRequest, tutor: TutorClient = Depends(get_tutor)) -> ChatResponse:
    try:
        reply = await tutor.send_chat_message(req.message, speak=req.speak)
    except TutorError as e:
        raise _http_error(e)
    return ChatResponse(reply=reply, messages=tutor.conversation.history)


@app.post("/chat/voice", response_model=ChatResponse)
async def chat_voice(req: VoiceTranscriptRequest, tutor: TutorClient = Depends(get_tutor)) -> ChatResponse:
    """Final transcript from the client's speech recognition; replies are always spoken."""
    try:
        reply = await tutor.send_chat_message(req.transcript, speak=True)
    except TutorError as e:
        raise _http_error(e)
    return ChatResponse(reply=reply, messages=tutor.conversation.history)


@app.post("/chat/clear", response_model=TutorState)
async def chat_clear(tutor: TutorClient = Depends(get_tutor)) -> TutorState:
    tutor.clear_chat()
    return tutor.state()


@app.post("/quiz/select", response_model=TutorState)
async def quiz_select(req: QuizSelectRequest, tutor: TutorClient = Depends(get_tutor)) -> TutorState:
    try:
        tutor.select_option(req.index, req.option)
    except TutorError as e:
        raise _http_error(e)
    return tutor.state()


@app.post("/quiz/submit", response_model=QuizSubmitResponse)
async def quiz_submit(tutor: TutorClient = Depends(get_tutor)) -> QuizSubmitResponse:
    score = tutor.submit_quiz()
    return QuizSubmitResponse(score=score, total=len(tutor.quiz.items))


@app.post("/reset", response_model=TutorState)
async def reset(tutor: TutorClient = Depends(get_tutor)) -> TutorState:
    tutor.reset_all()
    return tutor.state()


@app.post("/speech/replay")
async def speech_replay(tutor: TutorClient = Depends(get_tutor)) -> dict:
    try:
        text = await tutor.speak_latest()
    except TutorError as e:
        raise _http_error(e)
    return {"ok": True, "text": text}


@app.post("/speech/stop")
async def speech_stop(tutor: TutorClient = Depends(get_tutor)) -> dict:
    tutor.stop_speaking()
    return {"ok": True}


@app.get("/speech/latest.mp3")
async def speech_latest(tutor: TutorClient = Depends(get_tutor)) -> StreamingResponse:
    audio = getattr(tutor.speaker, "latest_audio", None)
    if not audio:
        raise HTTPException(status_code=404, detail="No speech audio available.")
    return StreamingResponse(BytesIO(audio), media_type="audio/mpeg")


@app.get("/session/download.docx")
async def session_download_docx(tutor: TutorClient = Depends(get_tutor)) -> StreamingResponse:
    bio = build_notes_docx(
        tutor.lesson,
        selections=tutor.quiz.selections,
        score=tutor.quiz.score,
        messages=tutor.conversation.history,
    )
    filename = "autotutor-notes.docx"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(bio, media_type=DOCX_MEDIA_TYPE, headers=headers)
