from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .models import Event


def event_to_record(event: Event) -> dict[str, object]:
    record: dict[str, object] = {
        "id": event.id,
        "timestamp": event.timestamp_utc.isoformat(),
        "code": event.code.value,
        "label": event.label,
        "group_id": event.group_id,
        "user_id": event.person_id,
        "name": event.display_name,
        "username": event.handle,
        "message_id": event.message_id,
        "via": event.source.value,
    }
    if event.duration is not None:
        record["start"] = event.started_at_utc.isoformat() if event.started_at_utc else None
        record["end"] = event.ended_at_utc.isoformat() if event.ended_at_utc else None
        record["duration_ms"] = int(event.duration.total_seconds() * 1000)
    return record


class AuditLog:
    """Local JSONL backup of every logged event. The database stays the source of truth."""

    def __init__(self, path: str | Path | None, logger: logging.Logger | None = None) -> None:
        self.path = Path(path) if path else None
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def write(self, event: Event) -> bool:
        if self.path is None:
            return False

        line = json.dumps(event_to_record(event), ensure_ascii=False)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except OSError:
            self.logger.warning("Could not write audit log entry to %s", self.path, exc_info=True)
            return False
        return True
