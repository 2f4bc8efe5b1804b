from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


class Clock:
    """Local-day boundaries for a configured timezone, returned as UTC instants."""

    def __init__(self, tz: ZoneInfo) -> None:
        self.tz = tz

    @property
    def tz_name(self) -> str:
        return self.tz.key

    def now(self) -> datetime:
        return utc_now()

    def local_date(self, instant_utc: datetime) -> date:
        return ensure_utc(instant_utc).astimezone(self.tz).date()

    def midnight_utc_for_local_day(self, day_value: date) -> datetime:
        midnight_local = datetime.combine(day_value, time.min, tzinfo=self.tz)
        return midnight_local.astimezone(timezone.utc)

    def start_of_day(self, now_utc: datetime | None = None) -> datetime:
        return self.midnight_utc_for_local_day(self.local_date(now_utc or self.now()))

    def start_of_week(self, now_utc: datetime | None = None) -> datetime:
        today = self.local_date(now_utc or self.now())
        # Weeks start on Monday.
        monday = today - timedelta(days=today.weekday())
        return self.midnight_utc_for_local_day(monday)

    def start_of_month(self, now_utc: datetime | None = None) -> datetime:
        today = self.local_date(now_utc or self.now())
        return self.midnight_utc_for_local_day(today.replace(day=1))
