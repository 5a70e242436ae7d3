from __future__ import annotations

"""SQLite store for engine settings and the focus session log."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterator

from focus_engine.core.config import EngineSettings


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ENGINE_SETTINGS_KEY = "engine"
ACTIVE_SESSION_KEY = "active_session"


@dataclass(frozen=True)
class FocusSessionRow:
    id: int
    recorded_at: str
    mode: str
    duration_minutes: int
    completed: bool


class Storage:
    """Owns the SQLite connection and transactional operations."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.DatabaseError:
            pass
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if not row:
                conn.execute("INSERT INTO schema_version(version) VALUES (?)", (SCHEMA_VERSION,))
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS focus_sessions(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recorded_at TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    completed INTEGER NOT NULL CHECK(completed IN (0, 1))
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings(
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        raw = row["value"]
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return raw

    def set_setting(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO settings(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, payload),
            )

    def load_engine_settings(self) -> EngineSettings:
        return EngineSettings.from_mapping(self.get_setting(ENGINE_SETTINGS_KEY, {}))

    def save_engine_settings(self, settings: EngineSettings) -> None:
        self.set_setting(ENGINE_SETTINGS_KEY, settings.to_mapping())

    def save_active_session(self, payload: dict) -> None:
        self.set_setting(ACTIVE_SESSION_KEY, payload)

    def load_active_session(self) -> dict | None:
        payload = self.get_setting(ACTIVE_SESSION_KEY)
        return payload if isinstance(payload, dict) else None

    def clear_active_session(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (ACTIVE_SESSION_KEY,))

    def record_focus_session(
        self,
        mode: str,
        duration_minutes: int,
        completed: bool,
        recorded_at: str | None = None,
    ) -> int:
        recorded_at = recorded_at or datetime.now().isoformat(timespec="seconds")
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO focus_sessions(recorded_at, mode, duration_minutes, completed) VALUES (?, ?, ?, ?)",
                (recorded_at, mode, duration_minutes, int(completed)),
            )
            session_id = int(cursor.lastrowid)
        logger.debug("Stored focus session %d (%s, %dm, completed=%s)", session_id, mode, duration_minutes, completed)
        return session_id

    def list_focus_sessions(self, limit: int = 100) -> list[FocusSessionRow]:
        """Most recent sessions first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, recorded_at, mode, duration_minutes, completed FROM focus_sessions ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            FocusSessionRow(
                id=row["id"],
                recorded_at=row["recorded_at"],
                mode=row["mode"],
                duration_minutes=row["duration_minutes"],
                completed=bool(row["completed"]),
            )
            for row in rows
        ]

    def completed_sessions_today(self, today: date | None = None) -> int:
        today = today or date.today()
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS c
                FROM focus_sessions
                WHERE completed = 1 AND date(recorded_at) = ?
                """,
                (today.isoformat(),),
            ).fetchone()
        return int(row["c"] if row else 0)

    def current_streak_days(self, today: date | None = None) -> int:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT date(recorded_at) AS d
                FROM focus_sessions
                WHERE completed = 1
                ORDER BY d DESC
                """
            ).fetchall()
        if not rows:
            return 0

        completed_days = {date.fromisoformat(row["d"]) for row in rows}
        cursor = today or date.today()
        streak = 0
        while cursor in completed_days:
            streak += 1
            cursor -= timedelta(days=1)
        return streak
