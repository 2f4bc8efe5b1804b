from __future__ import annotations

from datetime import date, datetime, timedelta

from .clock import Clock
from .models import (
    ActivityCode,
    DailyPersonReport,
    MonthlyPersonReport,
    OpenSession,
    Outcome,
    OutcomeKind,
    PersonSummary,
    WindowSummary,
)

MISSING = "—"

_COUNT_TAGS = (
    (ActivityCode.CHECK_IN, "in"),
    (ActivityCode.CHECK_OUT, "out"),
    (ActivityCode.RESTROOM, "wc"),
    (ActivityCode.MEAL, "mb"),
    (ActivityCode.ERRAND, "food"),
    (ActivityCode.LEAVE, "leave"),
    (ActivityCode.MEDICAL, "hospital"),
)

_DURATION_TAGS = (
    (ActivityCode.RESTROOM, "wc"),
    (ActivityCode.MEAL, "mb"),
    (ActivityCode.ERRAND, "food"),
)


def format_duration(delta: timedelta) -> str:
    """Compact duration such as ``1h 5m`` or ``42s``; negative spans render as ``?``."""
    if delta < timedelta(0):
        return "?"
    total_seconds = round(delta.total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not hours and not minutes:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def format_duration_long(delta: timedelta) -> str:
    """Minute-resolution duration such as ``1 hour 5 minutes``."""
    if delta < timedelta(0):
        return "?"
    total_minutes = round(delta.total_seconds() / 60)
    hours, minutes = divmod(total_minutes, 60)

    minute_part = f"{minutes} minute{'' if minutes == 1 else 's'}"
    if not hours:
        return minute_part
    return f"{hours} hour{'' if hours == 1 else 's'} {minute_part}"


def display_who(display_name: str, handle: str | None, person_id: int) -> str:
    return display_name.strip() or handle or str(person_id)


def _numbered_dates(values: list[date]) -> str:
    if not values:
        return MISSING
    return " ".join(f"{index}. {value.isoformat()}" for index, value in enumerate(values, start=1))


class Reporter:
    def __init__(self, clock: Clock) -> None:
        self.clock = clock

    def format_timestamp(self, instant_utc: datetime) -> str:
        return instant_utc.astimezone(self.clock.tz).strftime("%Y-%m-%d %H:%M:%S")

    def outcome_message(self, mention: str, outcome: Outcome) -> str:
        code = outcome.code
        kinds = outcome.kinds

        if OutcomeKind.SESSION_SUPERSEDED in kinds:
            previous = outcome.closed_code.label if outcome.closed_code else "previous break"
            return (
                f"{mention} ended {previous} ({format_duration(outcome.duration or timedelta(0))}). "
                f"Starting {code.label} now."
            )

        if OutcomeKind.SESSION_OPENED in kinds:
            return f"{mention} {code.label} started! Send the same again to end and back to work."

        if code.is_interval and OutcomeKind.SESSION_CLOSED in kinds:
            return f"{mention} {code.label} ended. Duration: {format_duration(outcome.duration or timedelta(0))}."

        event = outcome.logged_event
        noted_at = self.format_timestamp(event.timestamp_utc) if event else MISSING
        message = f"{mention} {code.label} noted at {noted_at}"
        if OutcomeKind.SESSION_CLOSED in kinds and outcome.closed_code is not None:
            message += (
                f" ({outcome.closed_code.label} closed after "
                f"{format_duration(outcome.duration or timedelta(0))})"
            )
        return message

    def format_person_line(self, entry: PersonSummary) -> str:
        who = display_who(entry.display_name, entry.handle, entry.person_id)

        parts = [f"{tag}:{entry.counts[code]}" for code, tag in _COUNT_TAGS if entry.counts[code]]
        parts.extend(
            f"{tag}⏱{format_duration(entry.durations[code])}"
            for code, tag in _DURATION_TAGS
            if entry.durations[code]
        )
        bucket = " ".join(parts) if parts else "no actions"
        last = f"last {self.format_timestamp(entry.last_activity_utc)}" if entry.last_activity_utc else "no time"
        return f"- {who}: {bucket} ({last})"

    def format_summary(self, title: str, summary: WindowSummary) -> str:
        if summary.total == 0:
            return f"{title}: no records yet."
        lines = [f"{title}: {summary.total} records"]
        lines.extend(self.format_person_line(entry) for entry in summary.persons)
        return "\n".join(lines)

    def format_active_sessions(self, sessions: list[OpenSession]) -> str:
        if not sessions:
            return "Active breaks: none."
        lines = ["Active breaks:"]
        for session in sessions:
            who = display_who(session.display_name, session.handle, session.person_id)
            lines.append(f"- {who}: {session.code.label} since {self.format_timestamp(session.started_at_utc)}")
        return "\n".join(lines)

    def build_report(self, today: WindowSummary, week: WindowSummary, sessions: list[OpenSession]) -> str:
        return "\n".join(
            [
                self.format_summary("Today", today),
                "",
                self.format_summary("This week", week),
                "",
                self.format_active_sessions(sessions),
                "",
                f"Timezone: {self.clock.tz_name}",
            ]
        )

    def build_personal_report(
        self,
        who: str,
        daily: DailyPersonReport,
        monthly: MonthlyPersonReport | None,
    ) -> str:
        leave_dates = monthly.leave_dates if monthly else []
        medical_dates = monthly.medical_dates if monthly else []

        check_in = self.format_timestamp(daily.first_in_utc) if daily.first_in_utc else MISSING
        check_out = self.format_timestamp(daily.last_out_utc) if daily.last_out_utc else MISSING
        working = format_duration_long(daily.working_span) if daily.working_span else MISSING

        def break_line(title: str, code: ActivityCode) -> str:
            return f"Total {title}: {daily.counts[code]} times, {format_duration_long(daily.durations[code])}"

        lines = [
            f"{who} today report:",
            f"Check-in: {check_in}",
            f"Check-out: {check_out}",
            f"Working hours: {working}",
            break_line("wc", ActivityCode.RESTROOM),
            break_line("food outside", ActivityCode.ERRAND),
            break_line("food", ActivityCode.MEAL),
            "",
            f"Total hospital this month: {len(medical_dates)} times",
            f"Date: {_numbered_dates(medical_dates)}",
            f"Total leave this month: {len(leave_dates)} times",
            f"Date: {_numbered_dates(leave_dates)}",
        ]
        return "\n".join(lines)
