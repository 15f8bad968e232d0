from __future__ import annotations

import os
from dataclasses import dataclass


def _env(name: str, default: str | None = None) -> str | None:
    val = os.environ.get(name)
    if val is None or val.strip() == "":
        return default
    return val.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid config: {name} must be an integer, got {raw!r}.")


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid config: {name} must be a number, got {raw!r}.")


@dataclass(frozen=True)
class Settings:
    provider: str | None = None  # "groq" | "gemini"; None = pick from credentials

    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    groq_base_url: str = "https://api.groq.com/openai/v1"

    google_api_key: str | None = None
    google_cloud_project: str | None = None
    google_cloud_location: str = "us-central1"
    gemini_model: str = "gemini-1.5-flash-002"

    database_url: str | None = None
    session_key: str = "autotutor-progress"
    session_ttl_seconds: int = 24 * 60 * 60
    chat_window: int = 10
    http_timeout: float = 30.0

    elevenlabs_api_key: str | None = None
    elevenlabs_voice_id: str = "21m00Tcm4TlvDq8AeBQo"
    elevenlabs_model: str = "eleven_multilingual_v2"

    log_level: str = "info"
    port: int = 8080


def load_settings() -> Settings:
    provider = _env("TUTOR_PROVIDER")
    return Settings(
        provider=provider.lower() if provider else None,
        groq_api_key=_env("GROQ_API_KEY"),
        groq_model=_env("GROQ_MODEL", Settings.groq_model),
        groq_base_url=_env("GROQ_BASE_URL", Settings.groq_base_url).rstrip("/"),
        google_api_key=_env("GOOGLE_API_KEY"),
        google_cloud_project=_env("GOOGLE_CLOUD_PROJECT"),
        google_cloud_location=_env("GOOGLE_CLOUD_LOCATION", Settings.google_cloud_location),
        gemini_model=_env("GEMINI_MODEL", Settings.gemini_model),
        database_url=_env("DATABASE_URL"),
        session_key=_env("TUTOR_SESSION_KEY", Settings.session_key),
        session_ttl_seconds=_env_int("TUTOR_SESSION_TTL", Settings.session_ttl_seconds),
        chat_window=_env_int("TUTOR_CHAT_WINDOW", Settings.chat_window),
        http_timeout=_env_float("TUTOR_HTTP_TIMEOUT", Settings.http_timeout),
        elevenlabs_api_key=_env("ELEVENLABS_API_KEY"),
        elevenlabs_voice_id=_env("ELEVENLABS_VOICE_ID", Settings.elevenlabs_voice_id),
        elevenlabs_model=_env("ELEVENLABS_MODEL", Settings.elevenlabs_model),
        log_level=_env("LOG_LEVEL", Settings.log_level).lower(),
        port=_env_int("PORT", Settings.port),
    )
