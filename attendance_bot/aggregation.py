from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from .clock import Clock
from .models import (
    ActivityCode,
    DailyPersonReport,
    Event,
    MonthlyPersonReport,
    PersonSummary,
    WindowSummary,
)


def in_window(event: Event, since_utc: datetime | None, until_utc: datetime | None = None) -> bool:
    # Windows are half-open: [since, until).
    if since_utc is not None and event.timestamp_utc < since_utc:
        return False
    if until_utc is not None and event.timestamp_utc >= until_utc:
        return False
    return True


def _person_events(
    events: Iterable[Event],
    person_id: int,
    since_utc: datetime | None,
    until_utc: datetime | None,
) -> list[Event]:
    selected = [
        event
        for event in events
        if event.person_id == person_id and in_window(event, since_utc, until_utc)
    ]
    selected.sort(key=lambda item: item.timestamp_utc)
    return selected


def summarize(
    events: Iterable[Event],
    since_utc: datetime,
    until_utc: datetime | None = None,
) -> WindowSummary:
    """Per-person counts, break durations and last activity for one window.

    Persons appear in the order they are first encountered in ``events``.
    """
    per_person: dict[int, PersonSummary] = {}
    total = 0

    for event in events:
        if not in_window(event, since_utc, until_utc):
            continue
        total += 1

        entry = per_person.get(event.person_id)
        if entry is None:
            entry = PersonSummary(
                person_id=event.person_id,
                display_name=event.display_name,
                handle=event.handle,
            )
            per_person[event.person_id] = entry

        entry.counts[event.code] += 1
        if event.code.is_interval and event.duration is not None:
            entry.durations[event.code] += event.duration

        if entry.last_activity_utc is None or event.timestamp_utc > entry.last_activity_utc:
            entry.last_activity_utc = event.timestamp_utc
            if event.display_name:
                entry.display_name = event.display_name
            if event.handle:
                entry.handle = event.handle

    return WindowSummary(total=total, persons=list(per_person.values()))


def build_daily_person_report(
    events: Iterable[Event],
    person_id: int,
    since_utc: datetime | None = None,
    until_utc: datetime | None = None,
) -> DailyPersonReport | None:
    person_events = _person_events(events, person_id, since_utc, until_utc)
    if not person_events:
        return None

    check_ins = [event.timestamp_utc for event in person_events if event.code is ActivityCode.CHECK_IN]
    check_outs = [event.timestamp_utc for event in person_events if event.code is ActivityCode.CHECK_OUT]
    first_in = min(check_ins) if check_ins else None
    last_out = max(check_outs) if check_outs else None

    working_span = timedelta(0)
    if first_in is not None and last_out is not None:
        working_span = last_out - first_in

    counts = {code: 0 for code in ActivityCode if code.is_interval}
    durations = {code: timedelta(0) for code in ActivityCode if code.is_interval}
    for event in person_events:
        if not event.code.is_interval:
            continue
        counts[event.code] += 1
        if event.duration is not None:
            durations[event.code] += event.duration

    return DailyPersonReport(
        person_id=person_id,
        first_in_utc=first_in,
        last_out_utc=last_out,
        working_span=working_span,
        counts=counts,
        durations=durations,
    )


def build_monthly_person_report(
    events: Iterable[Event],
    person_id: int,
    clock: Clock,
    since_utc: datetime | None = None,
    until_utc: datetime | None = None,
) -> MonthlyPersonReport | None:
    person_events = _person_events(events, person_id, since_utc, until_utc)
    if not person_events:
        return None

    # One entry per event; repeated signals on the same day are listed twice.
    leave_dates = [clock.local_date(e.timestamp_utc) for e in person_events if e.code is ActivityCode.LEAVE]
    medical_dates = [clock.local_date(e.timestamp_utc) for e in person_events if e.code is ActivityCode.MEDICAL]

    return MonthlyPersonReport(person_id=person_id, leave_dates=leave_dates, medical_dates=medical_dates)
