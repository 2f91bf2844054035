"""Domain events published on the in-process bus."""

from __future__ import annotations

from pydantic import BaseModel


class EventCreated(BaseModel):
    """Fired when a new calendar Event is stored."""

    event_id: str


class EventUpdated(BaseModel):
    """Fired when a stored Event is replaced by an edited copy."""

    event_id: str


class EventDeleted(BaseModel):
    """Fired after an Event has been removed from the calendar."""

    event_id: str


class ConflictsDetected(BaseModel):
    """Fired after a detection pass found at least one conflict."""

    event_id: str
    conflict_ids: list[str]


class ReminderDelivered(BaseModel):
    """Fired when a reminder was handed to its delivery channel."""

    event_id: str
    reminder_id: str


class NotificationsChanged(BaseModel):
    """Fired whenever the in-app notification feed changes."""

    total: int
    unread: int
