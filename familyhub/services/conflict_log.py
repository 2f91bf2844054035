"""Record of detected conflicts, with delayed purge of resolved ones."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta

from familyhub.domain.errors import ConflictNotFoundError
from familyhub.domain.models import Conflict
from familyhub.services.recurrence import series_id
from familyhub.services.timers import Clock, TimerHandle, Timers

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_HOURS = 24


def _involves(conflict: Conflict, event_id: str) -> bool:
    """True if the event raised the conflict or is one of the events it clashes with.

    Occurrences of a recurring series count as the series itself.
    """
    if conflict.new_event.id == event_id:
        return True
    return any(series_id(e.id) == event_id for e in conflict.conflicting_events)


class ConflictLog:
    """Conflicts keyed by id, in detection order.

    Re-running detection for an event replaces every unresolved conflict
    it takes part in, including ones other events raised against it.
    Resolved conflicts stay until their purge timer fires.
    """

    def __init__(
        self,
        timers: Timers,
        clock: Clock,
        retention_hours: float = DEFAULT_RETENTION_HOURS,
    ) -> None:
        self._timers = timers
        self._clock = clock
        self.retention = timedelta(hours=retention_hours)
        self._conflicts: dict[str, Conflict] = {}
        self._purges: dict[str, TimerHandle] = {}

    def record(self, event_id: str, conflicts: Sequence[Conflict]) -> None:
        stale = [
            c.id
            for c in self._conflicts.values()
            if not c.resolved and _involves(c, event_id)
        ]
        for conflict_id in stale:
            del self._conflicts[conflict_id]
        for conflict in conflicts:
            existing = self._conflicts.get(conflict.id)
            if existing is not None and existing.resolved:
                continue
            self._conflicts[conflict.id] = conflict

    def list_all(self, include_resolved: bool = False) -> list[Conflict]:
        return [
            c.model_copy(deep=True)
            for c in self._conflicts.values()
            if include_resolved or not c.resolved
        ]

    def for_event(self, event_id: str) -> list[Conflict]:
        """Unresolved conflicts the event takes part in, on either side."""
        return [
            c.model_copy(deep=True)
            for c in self._conflicts.values()
            if not c.resolved and _involves(c, event_id)
        ]

    def detected_for(self, event_id: str) -> list[Conflict]:
        """Unresolved conflicts raised when *event_id* itself was checked."""
        return [
            c.model_copy(deep=True)
            for c in self._conflicts.values()
            if not c.resolved and c.new_event.id == event_id
        ]

    def get(self, conflict_id: str) -> Conflict:
        conflict = self._conflicts.get(conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id)
        return conflict.model_copy(deep=True)

    def resolve(self, conflict_id: str) -> Conflict:
        conflict = self._conflicts.get(conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id)
        if not conflict.resolved:
            conflict.resolved = True
            conflict.resolved_at = self._clock.now()
            self._purges[conflict_id] = self._timers.call_at(
                conflict.resolved_at + self.retention, lambda: self._purge(conflict_id)
            )
            logger.info("Conflict %s resolved", conflict_id)
        return conflict.model_copy(deep=True)

    def forget_event(self, event_id: str) -> int:
        """Drop every unresolved conflict that involves a deleted event."""
        doomed = [c.id for c in self.for_event(event_id)]
        for conflict_id in doomed:
            del self._conflicts[conflict_id]
        return len(doomed)

    def _purge(self, conflict_id: str) -> None:
        self._purges.pop(conflict_id, None)
        if self._conflicts.pop(conflict_id, None) is not None:
            logger.debug("Purged resolved conflict %s", conflict_id)

    def __len__(self) -> int:
        return len(self._conflicts)
