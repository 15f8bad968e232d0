from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from cachetools import TTLCache
from pydantic import ValidationError

from autotutor.config import Settings
from autotutor.schemas import SessionSnapshot

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def save(self, key: str, snapshot: SessionSnapshot) -> None: ...

    def load(self, key: str) -> SessionSnapshot | None: ...

    def delete(self, key: str) -> None: ...


class InMemorySessionStore:
    """Process-local store; snapshots expire after `ttl_seconds` and vanish on restart."""

    def __init__(self, *, maxsize: int = 128, ttl_seconds: int = 24 * 60 * 60) -> None:
        # Snapshots are stored as JSON so a later load never aliases live state.
        self._cache: TTLCache[str, str] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)

    def save(self, key: str, snapshot: SessionSnapshot) -> None:
        self._cache[key] = snapshot.model_dump_json()

    def load(self, key: str) -> SessionSnapshot | None:
        raw = self._cache.get(key)
        if raw is None:
            return None
        return _parse_snapshot(raw)

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)


class PostgresSessionStore:
    """
    Snapshot storage in Postgres, one JSONB row per key.
    Requires DATABASE_URL.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url

    def _connect(self):
        # Import lazily so local dev can run without Postgres deps installed
        # (psycopg is only needed when DATABASE_URL is set).
        import psycopg  # type: ignore
        from psycopg.rows import dict_row  # type: ignore

        return psycopg.connect(self.database_url, row_factory=dict_row)

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS tutor_sessions (
                      key TEXT PRIMARY KEY,
                      snapshot JSONB NOT NULL,
                      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    );
                    """
                )
            conn.commit()

    def save(self, key: str, snapshot: SessionSnapshot) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO tutor_sessions (key, snapshot, updated_at)
                    VALUES (%s, %s::jsonb, now())
                    ON CONFLICT (key) DO UPDATE
                      SET snapshot = EXCLUDED.snapshot,
                          updated_at = EXCLUDED.updated_at;
                    """,
                    (key, snapshot.model_dump_json()),
                )
            conn.commit()

    def load(self, key: str) -> SessionSnapshot | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT snapshot FROM tutor_sessions WHERE key = %s;", (key,))
                row = cur.fetchone()
        if not row:
            return None
        return _parse_snapshot(row.get("snapshot"))

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM tutor_sessions WHERE key = %s;", (key,))
            conn.commit()


def _parse_snapshot(value: Any) -> SessionSnapshot | None:
    data = _coerce_json_dict(value)
    if data is None:
        logger.warning("Stored snapshot is not a JSON object; ignoring it.")
        return None
    try:
        return SessionSnapshot.model_validate(data)
    except ValidationError as e:
        logger.warning("Stored snapshot failed validation; ignoring it: %s", e)
        return None


def _coerce_json_dict(value: Any) -> dict | None:
    """
    Psycopg JSONB usually comes back as Python objects, but can be a JSON string
    depending on adapters. Normalize to a dict (or None).
    """
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            parsed = json.loads(s)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def make_session_store(settings: Settings) -> SessionStore:
    if settings.database_url:
        store = PostgresSessionStore(settings.database_url)
        store.ensure_schema()
        return store
    return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
