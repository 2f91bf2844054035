"""Service for expanding recurring events into individual occurrences."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta

from dateutil.rrule import MONTHLY, WEEKLY, YEARLY, rrule

from familyhub.domain.models import Event, Recurrence

_FREQ = {
    Recurrence.WEEKLY: WEEKLY,
    Recurrence.MONTHLY: MONTHLY,
    Recurrence.YEARLY: YEARLY,
}

DEFAULT_HORIZON_DAYS = 90


def occurrence_id(series_id: str, day: date) -> str:
    return f"{series_id}@{day.isoformat()}"


def series_id(event_id: str) -> str:
    """The id of the series an occurrence id belongs to (itself for a plain id)."""
    return event_id.split("@", 1)[0]


def expand_recurrence(parent: Event, until: datetime) -> list[Event]:
    """Expand a recurring Event into the occurrences after its own start.

    The parent's own date is excluded from the result (it is already an
    event). Each child copies every field of the parent except ``id``,
    ``date`` and ``recurring``. Monthly series anchored on the 29th-31st skip
    months without that day, as ``dateutil.rrule`` does.
    """
    freq = _FREQ.get(parent.recurring)
    if freq is None or until <= parent.start:
        return []

    children: list[Event] = []
    for start in rrule(freq, dtstart=parent.start, until=until):
        if start == parent.start:
            continue
        children.append(
            parent.model_copy(
                update={
                    "id": occurrence_id(parent.id, start.date()),
                    "date": start.date(),
                    "recurring": Recurrence.NONE,
                }
            )
        )
    return children


def expand_all(
    events: Iterable[Event],
    window_start: datetime,
    window_end: datetime,
) -> list[Event]:
    """Every event plus the occurrences of recurring ones inside the window.

    One-off events are returned as they are, whatever their date; only the
    generated occurrences are limited to ``[window_start, window_end)``.
    """
    expanded: list[Event] = []
    for event in events:
        expanded.append(event)
        for child in expand_recurrence(event, window_end):
            if child.end > window_start and child.start < window_end:
                expanded.append(child)
    return expanded


def candidates_around(
    event: Event, events: Iterable[Event], horizon_days: int = DEFAULT_HORIZON_DAYS
) -> list[Event]:
    """Stored events, with recurring series expanded near *event*'s date.

    Occurrences of *event*'s own series are left out.
    """
    window_start = event.start - timedelta(days=1)
    window_end = event.end + timedelta(days=horizon_days)
    own_series = series_id(event.id)
    return [
        candidate
        for candidate in expand_all(events, window_start, window_end)
        if series_id(candidate.id) != own_series
    ]
