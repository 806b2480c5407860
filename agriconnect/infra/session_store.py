"""Server-side storage of backend auth sessions keyed by browser cookie."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Tuple

from pydantic import ValidationError

from ..schemas import AuthSession
from .config import get_config


class SessionStore:
    """Keeps each session as JSON text until ``ttl_seconds`` after its last write.

    Subclasses only move text in and out; expiry checks and decoding live here.
    """

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))

    def get(self, session_id: str) -> Optional[AuthSession]:
        text = self._load(session_id, int(time.time()))
        if text is None:
            return None
        try:
            return AuthSession.model_validate_json(text)
        except ValidationError:
            return None

    def set(self, session_id: str, session: AuthSession) -> None:
        self._save(session_id, session.model_dump_json(), int(time.time()) + self._ttl_seconds)

    def delete(self, session_id: str) -> None:
        raise NotImplementedError

    def _load(self, session_id: str, now: int) -> Optional[str]:
        raise NotImplementedError

    def _save(self, session_id: str, text: str, expires_at: int) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self._items: Dict[str, Tuple[str, int]] = {}
        self._lock = Lock()

    def _load(self, session_id: str, now: int) -> Optional[str]:
        with self._lock:
            text, expires_at = self._items.get(session_id, (None, 0))
            if text is not None and expires_at <= now:
                del self._items[session_id]
                return None
            return text

    def _save(self, session_id: str, text: str, expires_at: int) -> None:
        with self._lock:
            self._items[session_id] = (text, expires_at)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)


class SqliteSessionStore(SessionStore):
    """Expired rows are purged on every write."""

    def __init__(self, path: Path, ttl_seconds: int) -> None:
        super().__init__(ttl_seconds)
        self._path = path
        self._lock = Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS auth_sessions ("
                "id TEXT PRIMARY KEY, body TEXT NOT NULL, expires_at INTEGER NOT NULL)"
            )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._path)

    def _load(self, session_id: str, now: int) -> Optional[str]:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT body FROM auth_sessions WHERE id = ? AND expires_at > ?",
                (session_id, now),
            ).fetchone()
        return row[0] if row else None

    def _save(self, session_id: str, text: str, expires_at: int) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM auth_sessions WHERE expires_at <= ?", (int(time.time()),))
            conn.execute(
                "INSERT OR REPLACE INTO auth_sessions (id, body, expires_at) VALUES (?, ?, ?)",
                (session_id, text, expires_at),
            )

    def delete(self, session_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM auth_sessions WHERE id = ?", (session_id,))


def build_session_store() -> SessionStore:
    cfg = get_config()
    ttl_seconds = cfg.session_store_ttl_seconds
    if cfg.session_store != "sqlite":
        return MemorySessionStore(ttl_seconds=ttl_seconds)
    path = Path(cfg.session_store_path) if cfg.session_store_path else (
        Path(__file__).resolve().parents[2] / ".cache" / "auth_sessions.sqlite3"
    )
    return SqliteSessionStore(path=path, ttl_seconds=ttl_seconds)
