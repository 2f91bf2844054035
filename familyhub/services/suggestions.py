"""Service for proposing conflict-free future slots for an event."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, time, timedelta

from familyhub.domain.models import Event
from familyhub.services.conflicts import find_conflicts

DEFAULT_SLOTS = ("09:00", "10:00", "11:00", "14:00", "15:00", "16:00", "18:00", "19:00")
MAX_SUGGESTIONS = 5


def _parse_slot(slot: str) -> time:
    return time.fromisoformat(slot)


class RescheduleSuggester:
    """Walks forward day by day from the event's date looking for free slots.

    Returns at most five start datetimes in chronological order. An empty
    list means nothing was free within the horizon; callers can retry with
    a larger ``max_days_out``.
    """

    def __init__(self, default_slots: Sequence[str] = DEFAULT_SLOTS, limit: int = MAX_SUGGESTIONS) -> None:
        self.default_slots = tuple(default_slots)
        self.limit = limit

    def suggest(
        self,
        event: Event,
        existing_events: Sequence[Event],
        preferred_slots: Sequence[str] | None = None,
        max_days_out: int = 7,
        avoid_weekends: bool = False,
    ) -> list[datetime]:
        slots = sorted(_parse_slot(s) for s in (preferred_slots or self.default_slots))
        duration = timedelta(minutes=event.duration)
        suggestions: list[datetime] = []

        for offset in range(1, max_days_out + 1):
            day = event.date + timedelta(days=offset)
            if avoid_weekends and day.weekday() >= 5:
                continue
            for slot in slots:
                start = datetime.combine(day, slot)
                if find_conflicts(start, start + duration, existing_events):
                    continue
                suggestions.append(start)
                if len(suggestions) >= self.limit:
                    return suggestions

        return suggestions
