"""Quiet-hours window checks, including windows that wrap past midnight."""

from __future__ import annotations

from datetime import datetime, time, timedelta

from familyhub.domain.models import QuietHours


def _hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(local_now: datetime, quiet_hours: QuietHours) -> bool:
    """True when *local_now* falls inside ``[start, end)``.

    A window whose end is earlier than its start (22:00-07:00) spans
    midnight. Equal start and end means an empty window.
    """
    if not quiet_hours.enabled:
        return False
    start, end = _hhmm(quiet_hours.start), _hhmm(quiet_hours.end)
    current = local_now.time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= current < end
    return current >= start or current < end


def quiet_hours_end(local_now: datetime, quiet_hours: QuietHours) -> datetime:
    """The next moment after *local_now* at which the window closes."""
    end = _hhmm(quiet_hours.end)
    candidate = local_now.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate
