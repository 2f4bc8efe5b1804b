from __future__ import annotations

import re

from .errors import InvalidSignal
from .models import ActivityCode, SignalSource

_CODE_NAMES = {
    ActivityCode.CHECK_IN: "Check-In ✅",
    ActivityCode.CHECK_OUT: "Check-Out ☑️",
    ActivityCode.RESTROOM: "Restroom 🚾",
    ActivityCode.MEAL: "Meal 🍽️",
    ActivityCode.ERRAND: "Food Outside 🛍",
    ActivityCode.LEAVE: "Official Leave ❌",
    ActivityCode.MEDICAL: "Hospital 🏥",
}


def parse_code(text: str) -> ActivityCode:
    """Map a typed short code (case-insensitive) to an activity code."""
    value = text.strip().lower()
    try:
        return ActivityCode(value)
    except ValueError as exc:
        raise InvalidSignal(f"Unknown activity code: {text!r}") from exc


def _mention_pattern(bot_user_id: int) -> re.Pattern[str]:
    return re.compile(rf"<@!?{bot_user_id}>")


def parse_signal(
    content: str,
    bot_user_id: int | None,
    *,
    require_mention: bool = False,
    allow_plain_codes: bool = True,
) -> tuple[ActivityCode, SignalSource] | None:
    """Return the code carried by a chat message, or None when it is not an attendance signal."""
    text = content.strip()
    mentioned = False

    if bot_user_id is not None:
        pattern = _mention_pattern(bot_user_id)
        if pattern.search(text):
            mentioned = True
            text = pattern.sub(" ", text).strip()

    if mentioned:
        # Addressed to the bot: anything that is not a code is a bad signal.
        return parse_code(text), SignalSource.MENTION

    if require_mention or not allow_plain_codes:
        return None

    try:
        return parse_code(text), SignalSource.TEXT
    except InvalidSignal:
        return None


def help_text() -> str:
    codes = ", ".join(f"{code.value} ({name})" for code, name in _CODE_NAMES.items())
    return (
        f"Send one of the short codes: {codes}.\n"
        "wc, mb and f start a break; send the same code again to end it."
    )
