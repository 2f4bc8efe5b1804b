from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum


class ActivityCode(str, Enum):
    CHECK_IN = "1"
    CHECK_OUT = "0"
    RESTROOM = "wc"
    MEAL = "mb"
    ERRAND = "f"
    LEAVE = "l"
    MEDICAL = "h"

    @property
    def is_interval(self) -> bool:
        return self in INTERVAL_CODES

    @property
    def label(self) -> str:
        return ACTIVITY_LABELS[self]


INTERVAL_CODES = frozenset({ActivityCode.RESTROOM, ActivityCode.MEAL, ActivityCode.ERRAND})

ACTIVITY_LABELS = {
    ActivityCode.CHECK_IN: "Check-In ✅",
    ActivityCode.CHECK_OUT: "Check-Out ☑️",
    ActivityCode.RESTROOM: "Break / Restroom 🚾",
    ActivityCode.MEAL: "Meal Break 🍽️",
    ActivityCode.ERRAND: "Outside for Food 🛍",
    ActivityCode.LEAVE: "Official Leave ❌",
    ActivityCode.MEDICAL: "Medical / Hospital 🏥",
}


class SignalSource(str, Enum):
    TEXT = "text"
    BUTTON = "button"
    MENTION = "mention"


class OutcomeKind(str, Enum):
    EVENT_LOGGED = "event-logged"
    SESSION_OPENED = "session-opened"
    SESSION_CLOSED = "session-closed"
    SESSION_SUPERSEDED = "session-superseded"


@dataclass(frozen=True, slots=True)
class OpenSession:
    person_id: int
    group_id: int
    code: ActivityCode
    started_at_utc: datetime
    display_name: str = ""
    handle: str | None = None


@dataclass(frozen=True, slots=True)
class Event:
    group_id: int
    person_id: int
    code: ActivityCode
    timestamp_utc: datetime
    display_name: str = ""
    handle: str | None = None
    source: SignalSource = SignalSource.TEXT
    started_at_utc: datetime | None = None
    ended_at_utc: datetime | None = None
    duration: timedelta | None = None
    message_id: int | None = None
    id: int | None = None

    @property
    def label(self) -> str:
        return self.code.label


@dataclass(frozen=True, slots=True)
class Outcome:
    code: ActivityCode
    kinds: frozenset[OutcomeKind]
    logged_event: Event | None = None
    closed_event: Event | None = None
    opened_session: OpenSession | None = None

    @property
    def duration(self) -> timedelta | None:
        if self.closed_event is None:
            return None
        return self.closed_event.duration

    @property
    def closed_code(self) -> ActivityCode | None:
        if self.closed_event is None:
            return None
        return self.closed_event.code


def _zero_counts() -> dict[ActivityCode, int]:
    return {code: 0 for code in ActivityCode}


def _zero_durations() -> dict[ActivityCode, timedelta]:
    return {code: timedelta(0) for code in ActivityCode if code.is_interval}


@dataclass(slots=True)
class PersonSummary:
    person_id: int
    display_name: str = ""
    handle: str | None = None
    counts: dict[ActivityCode, int] = field(default_factory=_zero_counts)
    durations: dict[ActivityCode, timedelta] = field(default_factory=_zero_durations)
    last_activity_utc: datetime | None = None


@dataclass(frozen=True, slots=True)
class WindowSummary:
    total: int
    persons: list[PersonSummary]


@dataclass(frozen=True, slots=True)
class DailyPersonReport:
    person_id: int
    first_in_utc: datetime | None
    last_out_utc: datetime | None
    working_span: timedelta
    counts: dict[ActivityCode, int]
    durations: dict[ActivityCode, timedelta]


@dataclass(frozen=True, slots=True)
class MonthlyPersonReport:
    person_id: int
    leave_dates: list[date]
    medical_dates: list[date]
