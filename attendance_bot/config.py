from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_DB_PATH = "attendance.db"
DEFAULT_AUDIT_LOG_PATH = "logs/attendance-log.jsonl"


@dataclass(frozen=True, slots=True)
class Config:
    discord_token: str
    guild_id: int
    timezone: ZoneInfo
    database_path: Path
    audit_log_path: Path | None
    allow_plain_codes: bool
    require_mention: bool
    attendance_channel_ids: frozenset[int]

    def tracks_channel(self, channel_id: int) -> bool:
        # An empty allow-list means every channel in the guild is tracked.
        return not self.attendance_channel_ids or channel_id in self.attendance_channel_ids


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _parse_positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _required_int_env(name: str) -> int:
    return _parse_positive_int(name, _required_env(name))


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default

    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean")


def _timezone_from_env(name: str, default: str = "UTC") -> ZoneInfo:
    tz_name = (os.getenv(name) or "").strip() or default
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def _channel_ids_env(name: str) -> frozenset[int]:
    raw = os.getenv(name, "")
    return frozenset(_parse_positive_int(name, part.strip()) for part in raw.split(",") if part.strip())


def load_config() -> Config:
    audit_raw = os.getenv("AUDIT_LOG_PATH", DEFAULT_AUDIT_LOG_PATH).strip()

    return Config(
        discord_token=_required_env("DISCORD_TOKEN"),
        guild_id=_required_int_env("GUILD_ID"),
        timezone=_timezone_from_env("TIMEZONE"),
        database_path=Path(os.getenv("DATABASE_PATH", "").strip() or DEFAULT_DB_PATH),
        audit_log_path=Path(audit_raw) if audit_raw else None,
        allow_plain_codes=_bool_env("ALLOW_PLAIN_CODES", True),
        require_mention=_bool_env("REQUIRE_MENTION", False),
        attendance_channel_ids=_channel_ids_env("ATTENDANCE_CHANNEL_IDS"),
    )
