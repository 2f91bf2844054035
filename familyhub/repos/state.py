"""Durable keyed storage for the notification engine's persisted records.

Three records are written: ``notifications``, ``settings`` and
``reminders``. Payloads are plain JSON (timestamps as ISO-8601 strings, as
produced by ``model_dump(mode="json")``).

Write failures are logged and swallowed: in-memory state stays
authoritative for the running process.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

NOTIFICATIONS_KEY = "notifications"
SETTINGS_KEY = "settings"
REMINDERS_KEY = "reminders"
SNOOZED_KEY = "snoozed_notifications"


class StateStore(Protocol):
    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, payload: Any) -> None: ...


class MemoryStateStore:
    """Dict-backed store; contents are deep-copied through JSON."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        raw = self._records.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, payload: Any) -> None:
        self._records[key] = json.dumps(payload)


class JsonFileStateStore:
    """All records in one JSON document, replaced atomically on each save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._records: dict[str, Any] = self._read()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read state file %s, starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s is not a JSON object, starting empty", self.path)
            return {}
        return data

    def load(self, key: str) -> Any | None:
        return self._records.get(key)

    def save(self, key: str, payload: Any) -> None:
        self._records[key] = payload
        tmp_file = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(self._records, f, indent=2)
            os.replace(tmp_file, self.path)
        except OSError:
            logger.exception("Failed to persist %r to %s", key, self.path)
