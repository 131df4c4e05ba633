"""Storage backends for token usage events."""

from __future__ import annotations

from threading import Lock
from typing import List, Optional, Protocol
import sqlite3

from detect_cart.models import UsageEvent


class UsageStore(Protocol):
    """Append-only usage store interface. There is no update or delete."""

    def add_event(self, event: UsageEvent) -> UsageEvent:
        ...

    def list_events(self, user_id: Optional[str] = None) -> List[UsageEvent]:
        ...


class InMemoryUsageStore:
    """In-memory storage backend (default for tests and the CLI)."""

    def __init__(self):
        self._events: List[UsageEvent] = []
        self._lock = Lock()

    def add_event(self, event: UsageEvent) -> UsageEvent:
        with self._lock:
            self._events.append(event)
        return event

    def list_events(self, user_id: Optional[str] = None) -> List[UsageEvent]:
        with self._lock:
            events = list(self._events)
        if user_id is None:
            return events
        return [e for e in events if e.user_id == user_id]


class SQLiteUsageStore:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "detect_cart.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._lock = Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS token_usage (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                model_id TEXT NOT NULL,
                total_tokens INTEGER NOT NULL CHECK (total_tokens > 0),
                timestamp INTEGER NOT NULL
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_token_usage_user ON token_usage(user_id)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_token_usage_time ON token_usage(timestamp)")
        self._conn.commit()

    def add_event(self, event: UsageEvent) -> UsageEvent:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO token_usage (id, user_id, model_id, total_tokens, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.event_id,
                    event.user_id,
                    event.model_id,
                    event.total_tokens,
                    event.timestamp,
                ),
            )
            self._conn.commit()
        return event

    def _row_to_event(self, row: sqlite3.Row) -> UsageEvent:
        return UsageEvent(
            model_id=row["model_id"],
            total_tokens=int(row["total_tokens"]),
            user_id=row["user_id"],
            timestamp=int(row["timestamp"]),
            event_id=row["id"],
        )

    def list_events(self, user_id: Optional[str] = None) -> List[UsageEvent]:
        with self._lock:
            if user_id is None:
                rows = self._conn.execute(
                    "SELECT * FROM token_usage ORDER BY timestamp ASC, rowid ASC"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM token_usage WHERE user_id = ? ORDER BY timestamp ASC, rowid ASC",
                    (user_id,),
                ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def close(self) -> None:
        self._conn.close()
