from __future__ import annotations

import logging
import threading
from datetime import datetime
from enum import Enum

from .audit import AuditLog
from .clock import ensure_utc, utc_now
from .db import Database
from .errors import InvalidSignal, MissingIdentity
from .models import ActivityCode, Event, OpenSession, Outcome, OutcomeKind, SignalSource
from .signals import parse_code


class Transition(str, Enum):
    LOG = "log"
    OPEN = "open"
    CLOSE = "close"
    SUPERSEDE = "supersede"
    CLOSE_AND_LOG = "close-and-log"


def plan_transition(current: OpenSession | None, code: ActivityCode) -> Transition:
    """Decide what a signal means given the person's open session, if any.

    Idle persons log instantaneous codes and open a break on interval codes.
    A person on a break closes it by repeating the code, switches by sending a
    different interval code, and has it closed for them by CheckOut. Other
    instantaneous codes are logged without touching the open break.
    """
    if code.is_interval:
        if current is None:
            return Transition.OPEN
        if current.code is code:
            return Transition.CLOSE
        return Transition.SUPERSEDE

    if code is ActivityCode.CHECK_OUT:
        if current is None:
            return Transition.LOG
        return Transition.CLOSE_AND_LOG

    if code in (ActivityCode.CHECK_IN, ActivityCode.LEAVE, ActivityCode.MEDICAL):
        return Transition.LOG

    raise InvalidSignal(f"Unhandled activity code: {code!r}")


def coerce_code(code: ActivityCode | str) -> ActivityCode:
    if isinstance(code, ActivityCode):
        return code
    if not isinstance(code, str):
        raise InvalidSignal(f"Unknown activity code: {code!r}")
    return parse_code(code)


class AttendanceTracker:
    def __init__(
        self,
        db: Database,
        audit: AuditLog | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.audit = audit
        self.logger = logger or logging.getLogger(__name__)

        # Mirror of the open_sessions table; written only after the store accepted the change.
        self._sessions: dict[int, OpenSession] = {}
        self._person_locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def load_all(self) -> dict[int, OpenSession]:
        sessions = {session.person_id: session for session in self.db.list_open_sessions()}
        self._sessions = sessions
        self.logger.info("Loaded %d open sessions from storage", len(sessions))
        return dict(sessions)

    def get_session(self, person_id: int) -> OpenSession | None:
        return self._sessions.get(person_id)

    def active_sessions(self) -> list[OpenSession]:
        return sorted(self._sessions.values(), key=lambda item: item.started_at_utc)

    def _person_lock(self, person_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._person_locks.get(person_id)
            if lock is None:
                lock = threading.Lock()
                self._person_locks[person_id] = lock
            return lock

    def apply(
        self,
        group_id: int | None,
        person_id: int | None,
        code: ActivityCode | str,
        signal_at_utc: datetime | None = None,
        *,
        display_name: str = "",
        handle: str | None = None,
        source: SignalSource = SignalSource.TEXT,
        message_id: int | None = None,
    ) -> Outcome:
        if group_id is None or person_id is None:
            raise MissingIdentity("Signal is missing a group or person id")

        activity = coerce_code(code)
        at = ensure_utc(signal_at_utc or utc_now())

        with self._person_lock(person_id):
            current = self._sessions.get(person_id)
            transition = plan_transition(current, activity)

            kinds: set[OutcomeKind] = set()
            closed_event: Event | None = None
            logged_event: Event | None = None
            opened: OpenSession | None = None

            if transition in (Transition.CLOSE, Transition.SUPERSEDE, Transition.CLOSE_AND_LOG):
                assert current is not None
                closed_event = self._close_session(
                    current,
                    at,
                    display_name=display_name,
                    handle=handle,
                    source=source,
                    message_id=message_id,
                )
                kinds.add(OutcomeKind.SESSION_CLOSED)

            if transition in (Transition.OPEN, Transition.SUPERSEDE):
                opened = self._open_session(
                    OpenSession(
                        person_id=person_id,
                        group_id=group_id,
                        code=activity,
                        started_at_utc=at,
                        display_name=display_name,
                        handle=handle,
                    )
                )
                kinds.add(OutcomeKind.SESSION_OPENED)
                if transition is Transition.SUPERSEDE:
                    kinds.add(OutcomeKind.SESSION_SUPERSEDED)

            if transition in (Transition.LOG, Transition.CLOSE_AND_LOG):
                logged_event = self._append(
                    Event(
                        group_id=group_id,
                        person_id=person_id,
                        code=activity,
                        timestamp_utc=at,
                        display_name=display_name,
                        handle=handle,
                        source=source,
                        message_id=message_id,
                    )
                )
                kinds.add(OutcomeKind.EVENT_LOGGED)

        self.logger.info(
            "Applied %s for person=%s group=%s transition=%s",
            activity.name,
            person_id,
            group_id,
            transition.value,
        )
        return Outcome(
            code=activity,
            kinds=frozenset(kinds),
            logged_event=logged_event,
            closed_event=closed_event,
            opened_session=opened,
        )

    def _close_session(
        self,
        session: OpenSession,
        ended_at_utc: datetime,
        *,
        display_name: str,
        handle: str | None,
        source: SignalSource,
        message_id: int | None,
    ) -> Event:
        # Out-of-order instants yield zero or negative durations; they are kept as-is.
        duration = ended_at_utc - session.started_at_utc
        event = self._append(
            Event(
                group_id=session.group_id,
                person_id=session.person_id,
                code=session.code,
                timestamp_utc=ended_at_utc,
                display_name=display_name or session.display_name,
                handle=handle if handle is not None else session.handle,
                source=source,
                started_at_utc=session.started_at_utc,
                ended_at_utc=ended_at_utc,
                duration=duration,
                message_id=message_id,
            )
        )
        self.db.delete_open_session(session.person_id)
        self._sessions.pop(session.person_id, None)
        self.logger.debug("Closed %s for person=%s after %s", session.code.name, session.person_id, duration)
        return event

    def _open_session(self, session: OpenSession) -> OpenSession:
        self.db.put_open_session(session)
        self._sessions[session.person_id] = session
        return session

    def _append(self, event: Event) -> Event:
        stored = self.db.append_event(event)
        if self.audit is not None:
            self.audit.write(stored)
        return stored
