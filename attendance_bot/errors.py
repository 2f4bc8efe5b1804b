from __future__ import annotations


class AttendanceError(Exception):
    """Base exception for attendance tracking failures."""


class InvalidSignal(AttendanceError, ValueError):
    """Raised when an activity code is not one of the known codes."""


class MissingIdentity(AttendanceError, ValueError):
    """Raised when a signal cannot be attributed to a group and person."""


class PersistenceFailure(AttendanceError):
    """Raised when a store read or write did not complete."""
