from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import types

from autotutor.config import Settings
from autotutor.errors import TransportError
from autotutor.schemas import CompletionRequest, Role

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def complete(self, request: CompletionRequest) -> str: ...


class GroqTransport:
    """OpenAI-compatible chat completions (Groq by default) over httpx."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "llama-3.1-8b-instant",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout: float = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise RuntimeError("Missing config: set GROQ_API_KEY.")
        self.model = model
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self._api_key = api_key
        self._timeout = timeout
        self._http_transport = http_transport

    async def complete(self, request: CompletionRequest) -> str:
        payload = {
            "model": self.model,
            "temperature": request.temperature,
            "max_tokens": request.maxTokens,
            "messages": [{"role": "system", "content": request.systemPrompt}]
            + [{"role": t.role.value, "content": t.content} for t in request.history],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._http_transport) as client:
                r = await client.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error("Completion request failed: %s", e)
            raise TransportError(f"Completion request failed: {e}") from e

        if r.status_code >= 400:
            logger.error("Completion endpoint returned %s: %s", r.status_code, r.text[:500])
            raise TransportError(
                f"Completion endpoint returned {r.status_code}: {r.text[:300]}", status_code=r.status_code
            )
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"Completion endpoint returned non-JSON body: {r.text[:300]}") from e

        text = _first_choice_text(data)
        logger.debug("Raw completion (%d chars): %s", len(text), text[:500])
        return text


def _first_choice_text(data: Any) -> str:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices or not isinstance(choices, list):
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        raise TransportError(f"Unexpected completion choice: {str(first)[:300]}")
    message = first.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, list):
        # Content-parts form: [{"type": "text", "text": "..."}, ...]
        content = "".join(
            p.get("text") or "" for p in content if isinstance(p, dict) and isinstance(p.get("text"), str)
        )
    if isinstance(content, str) and content:
        return content
    text = first.get("text")
    return text if isinstance(text, str) else ""


class GeminiTransport:
    """
    Supports two modes:
    - Vertex AI mode (recommended on Cloud Run): GOOGLE_CLOUD_PROJECT + GOOGLE_CLOUD_LOCATION
    - API key mode (local/dev): GOOGLE_API_KEY
    """

    def __init__(self, settings: Settings, *, client: Any | None = None) -> None:
        # Vertex AI model availability can vary by project/region. Prefer a widely available default.
        self.model = settings.gemini_model

        if client is not None:
            self.client = client
        elif settings.google_api_key:
            self.client = genai.Client(api_key=settings.google_api_key)
        elif settings.google_cloud_project:
            # Uses ADC (service account) on Cloud Run
            self.client = genai.Client(
                vertexai=True, project=settings.google_cloud_project, location=settings.google_cloud_location
            )
        else:
            raise RuntimeError(
                "Missing config: set GOOGLE_API_KEY (local) or GOOGLE_CLOUD_PROJECT (+ optional GOOGLE_CLOUD_LOCATION) (Vertex/Cloud Run)."
            )

    async def complete(self, request: CompletionRequest) -> str:
        # Retry with fallback models if the configured model isn't available.
        candidates: list[str] = []
        for m in [self.model, "gemini-1.5-flash", "gemini-1.5-pro-002", "gemini-1.5-pro"]:
            if m not in candidates:
                candidates.append(m)

        contents = [
            types.Content(
                role="model" if t.role is Role.assistant else "user",
                parts=[types.Part(text=t.content)],
            )
            for t in request.history
        ]
        config = types.GenerateContentConfig(
            system_instruction=request.systemPrompt,
            temperature=request.temperature,
            max_output_tokens=request.maxTokens,
        )

        last_err: Exception | None = None
        for m in candidates:
            try:
                resp = await self.client.aio.models.generate_content(model=m, contents=contents, config=config)
            except Exception as e:
                last_err = e
                if _is_model_not_found(str(e)):
                    logger.warning("Model %s not available, trying next candidate.", m)
                    continue
                logger.error("Gemini request failed: %s", e)
                raise TransportError(f"Gemini request failed: {e}") from e

            text = resp.text or ""
            logger.debug("Raw completion from %s (%d chars): %s", m, len(text), text[:500])
            return text

        raise TransportError(f"All model candidates failed. Last error: {last_err}")


def _is_model_not_found(msg: str) -> bool:
    return (
        "NOT_FOUND" in msg
        and ("was not found" in msg or "not found" in msg or "is not found" in msg)
        and ("Publisher Model" in msg or "models/" in msg or "Call ListModels" in msg)
    )


def make_transport(settings: Settings) -> Transport:
    provider = settings.provider or ("groq" if settings.groq_api_key else "gemini")
    if provider == "groq":
        return GroqTransport(
            api_key=settings.groq_api_key or "",
            model=settings.groq_model,
            base_url=settings.groq_base_url,
            timeout=settings.http_timeout,
        )
    if provider == "gemini":
        return GeminiTransport(settings)
    raise RuntimeError(f"Unknown TUTOR_PROVIDER {provider!r}; expected 'groq' or 'gemini'.")
