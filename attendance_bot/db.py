from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

from .clock import ensure_utc
from .errors import PersistenceFailure
from .models import ActivityCode, Event, OpenSession, SignalSource


class Database:
    """Thin SQLite access layer for open sessions and the attendance event log."""

    def __init__(self, db_path: str | Path) -> None:
        # The bot hands storage calls to worker threads; the lock serializes connection use.
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # open_sessions: at most one in-progress break per person.
        # events: append-only attendance log; rows are never updated or deleted.
        with self._guard("initialize schema"):
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS open_sessions (
                  person_id INTEGER PRIMARY KEY,
                  group_id INTEGER NOT NULL,
                  code TEXT NOT NULL,
                  started_at_utc TEXT NOT NULL,
                  display_name TEXT NOT NULL DEFAULT '',
                  handle TEXT
                );

                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  group_id INTEGER NOT NULL,
                  person_id INTEGER NOT NULL,
                  code TEXT NOT NULL,
                  timestamp_utc TEXT NOT NULL,
                  display_name TEXT NOT NULL DEFAULT '',
                  handle TEXT,
                  source TEXT NOT NULL,
                  started_at_utc TEXT,
                  ended_at_utc TEXT,
                  duration_us INTEGER,
                  message_id INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_events_group_time ON events (group_id, timestamp_utc);
                CREATE INDEX IF NOT EXISTS idx_events_person_time ON events (person_id, timestamp_utc);
                """
            )
            self._conn.commit()

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to {action}: {exc}") from exc

    def put_open_session(self, session: OpenSession) -> None:
        with self._guard(f"store open session for person {session.person_id}"):
            self._conn.execute(
                """
                INSERT INTO open_sessions (person_id, group_id, code, started_at_utc, display_name, handle)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(person_id)
                DO UPDATE SET
                  group_id=excluded.group_id,
                  code=excluded.code,
                  started_at_utc=excluded.started_at_utc,
                  display_name=excluded.display_name,
                  handle=excluded.handle
                """,
                (
                    session.person_id,
                    session.group_id,
                    session.code.value,
                    _to_iso(session.started_at_utc),
                    session.display_name,
                    session.handle,
                ),
            )
            self._conn.commit()

    def get_open_session(self, person_id: int) -> OpenSession | None:
        with self._guard(f"read open session for person {person_id}"):
            row = self._conn.execute(
                "SELECT * FROM open_sessions WHERE person_id = ?",
                (person_id,),
            ).fetchone()
        if row is None:
            return None
        return _session_from_row(row)

    def delete_open_session(self, person_id: int) -> None:
        with self._guard(f"delete open session for person {person_id}"):
            self._conn.execute("DELETE FROM open_sessions WHERE person_id = ?", (person_id,))
            self._conn.commit()

    def list_open_sessions(self) -> list[OpenSession]:
        with self._guard("list open sessions"):
            rows = self._conn.execute(
                "SELECT * FROM open_sessions ORDER BY started_at_utc ASC"
            ).fetchall()
        return [_session_from_row(row) for row in rows]

    def append_event(self, event: Event) -> Event:
        duration_us = None
        if event.duration is not None:
            duration_us = event.duration // timedelta(microseconds=1)

        with self._guard(f"append {event.code.name} event for person {event.person_id}"):
            cursor = self._conn.execute(
                """
                INSERT INTO events (
                  group_id, person_id, code, timestamp_utc, display_name, handle,
                  source, started_at_utc, ended_at_utc, duration_us, message_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.group_id,
                    event.person_id,
                    event.code.value,
                    _to_iso(event.timestamp_utc),
                    event.display_name,
                    event.handle,
                    event.source.value,
                    _to_iso(event.started_at_utc) if event.started_at_utc else None,
                    _to_iso(event.ended_at_utc) if event.ended_at_utc else None,
                    duration_us,
                    event.message_id,
                ),
            )
            self._conn.commit()
            event_id = cursor.lastrowid

        return replace(event, id=event_id)

    def query_since(
        self,
        since_utc: datetime,
        *,
        group_id: int | None = None,
        person_id: int | None = None,
        until_utc: datetime | None = None,
    ) -> list[Event]:
        clauses = ["timestamp_utc >= ?"]
        params: list[object] = [_to_iso(since_utc)]

        if until_utc is not None:
            clauses.append("timestamp_utc < ?")
            params.append(_to_iso(until_utc))
        if group_id is not None:
            clauses.append("group_id = ?")
            params.append(group_id)
        if person_id is not None:
            clauses.append("person_id = ?")
            params.append(person_id)

        sql = f"SELECT * FROM events WHERE {' AND '.join(clauses)} ORDER BY timestamp_utc ASC, id ASC"
        with self._guard("query events"):
            rows = self._conn.execute(sql, params).fetchall()
        return [_event_from_row(row) for row in rows]


def _to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO string so lexical order matches time order."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _session_from_row(row: sqlite3.Row) -> OpenSession:
    return OpenSession(
        person_id=row["person_id"],
        group_id=row["group_id"],
        code=ActivityCode(row["code"]),
        started_at_utc=datetime.fromisoformat(row["started_at_utc"]),
        display_name=row["display_name"],
        handle=row["handle"],
    )


def _event_from_row(row: sqlite3.Row) -> Event:
    duration = None
    if row["duration_us"] is not None:
        duration = timedelta(microseconds=row["duration_us"])

    return Event(
        id=row["id"],
        group_id=row["group_id"],
        person_id=row["person_id"],
        code=ActivityCode(row["code"]),
        timestamp_utc=datetime.fromisoformat(row["timestamp_utc"]),
        display_name=row["display_name"],
        handle=row["handle"],
        source=SignalSource(row["source"]),
        started_at_utc=_from_iso(row["started_at_utc"]),
        ended_at_utc=_from_iso(row["ended_at_utc"]),
        duration=duration,
        message_id=row["message_id"],
    )
