from __future__ import annotations

import logging
from typing import Protocol

import httpx

from autotutor.config import Settings
from autotutor.errors import SpeechError

logger = logging.getLogger(__name__)


class Speaker(Protocol):
    async def speak(self, text: str) -> None: ...

    def stop(self) -> None: ...


class NullSpeaker:
    """Used when no text-to-speech backend is configured."""

    latest_audio: bytes | None = None

    async def speak(self, text: str) -> None:
        logger.debug("No speech backend configured; skipping %d chars.", len(text))

    def stop(self) -> None:
        pass


class ElevenLabsSpeaker:
    """
    Text-to-speech through the ElevenLabs API. Keeps only the most recent clip:
    a newer speak() supersedes any older one still waiting on the network.
    """

    URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_multilingual_v2",
        timeout: float = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise RuntimeError("Missing config: set ELEVENLABS_API_KEY.")
        self._api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self._timeout = timeout
        self._http_transport = http_transport
        self._generation = 0
        self.latest_audio: bytes | None = None
        self.latest_text: str | None = None

    async def speak(self, text: str) -> None:
        if not text:
            return
        self._generation += 1
        generation = self._generation

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._http_transport) as client:
                r = await client.post(
                    self.URL.format(voice_id=self.voice_id),
                    headers={
                        "xi-api-key": self._api_key,
                        "Content-Type": "application/json",
                        "Accept": "audio/mpeg",
                    },
                    json={"text": text, "model_id": self.model_id},
                )
        except httpx.HTTPError as e:
            raise SpeechError(f"ElevenLabs text-to-speech error: {e}") from e
        if r.status_code >= 400:
            raise SpeechError(f"ElevenLabs text-to-speech failed: {r.status_code} {r.text[:300]}")

        if generation != self._generation:
            logger.debug("Dropping superseded speech clip (generation %d).", generation)
            return
        self.latest_audio = r.content
        self.latest_text = text

    def stop(self) -> None:
        self._generation += 1
        self.latest_audio = None
        self.latest_text = None


def make_speaker(settings: Settings) -> Speaker:
    if settings.elevenlabs_api_key:
        return ElevenLabsSpeaker(
            api_key=settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model,
            timeout=settings.http_timeout,
        )
    return NullSpeaker()
