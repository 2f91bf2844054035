"""FastAPI application: HTTP surface of the conflict and reminder engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import date, datetime, timezone
from typing import Any

import dateparser
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, Response

from familyhub.domain.events import EventCreated, EventDeleted, EventUpdated
from familyhub.domain.handlers import HandlerRegistry
from familyhub.domain.models import (
    Conflict,
    Event,
    EventWithConflicts,
    InAppNotification,
    NotificationCategory,
    NotificationFilters,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
    Person,
    Reminder,
    ReminderStatus,
    RescheduleRequest,
    Rule,
    RuleUpdateRequest,
    SnoozeRequest,
)
from familyhub.logging_config import setup_logging
from familyhub.services.center import NotificationCenter, build_center
from familyhub.services.timers import FrozenClock

logger = logging.getLogger(__name__)

router = APIRouter()


def get_center(request: Request) -> NotificationCenter:
    return request.app.state.center


def _as_utc(value: datetime, center: NotificationCenter) -> datetime:
    """Naive datetimes from clients are wall-clock times in the configured zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=center.config.zone())
    return value.astimezone(timezone.utc)


def _get_event(center: NotificationCenter, event_id: str) -> Event:
    event = center.events.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


# ── People ────────────────────────────────────────────────────────────


@router.get("/people", response_model=list[Person])
def list_people(center: NotificationCenter = Depends(get_center)) -> list[Person]:
    return center.people.list_all()


@router.post("/people", response_model=Person, status_code=201)
def add_person(person: Person, center: NotificationCenter = Depends(get_center)) -> Person:
    center.people.add(person)
    return person


# ── Events ────────────────────────────────────────────────────────────


@router.get("/events", response_model=list[Event])
def list_events(
    person_id: str | None = None, center: NotificationCenter = Depends(get_center)
) -> list[Event]:
    """Return stored events, optionally only those a person attends."""
    if person_id is not None:
        return center.events.list_for_person(person_id)
    return center.events.list_all()


@router.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str, center: NotificationCenter = Depends(get_center)) -> Event:
    return _get_event(center, event_id)


@router.post("/events", response_model=EventWithConflicts, status_code=201)
def create_event(event: Event, center: NotificationCenter = Depends(get_center)) -> EventWithConflicts:
    """Store an event; conflict detection and reminders run on the bus."""
    if center.events.get(event.id) is not None:
        raise HTTPException(status_code=409, detail="Event already exists")
    center.events.add(event)
    center.bus.publish(EventCreated(event_id=event.id))
    return EventWithConflicts(event=event, conflicts=center.conflicts.detected_for(event.id))


@router.put("/events/{event_id}", response_model=EventWithConflicts)
def update_event(
    event_id: str,
    body: dict[str, Any] = Body(...),
    center: NotificationCenter = Depends(get_center),
) -> EventWithConflicts:
    """Replace an event with an edited copy (fields not given are kept)."""
    current = _get_event(center, event_id)
    body.pop("id", None)
    try:
        edited = Event.model_validate({**current.model_dump(), **body})
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    center.events.replace(edited)
    center.bus.publish(EventUpdated(event_id=event_id))
    return EventWithConflicts(event=edited, conflicts=center.conflicts.detected_for(event_id))


@router.delete("/events/{event_id}", status_code=204)
def delete_event(event_id: str, center: NotificationCenter = Depends(get_center)) -> Response:
    if center.events.delete(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    center.bus.publish(EventDeleted(event_id=event_id))
    return Response(status_code=204)


@router.get("/events/{event_id}/suggestions", response_model=list[datetime])
def suggest_times(
    event_id: str,
    max_days_out: int = Query(7, ge=1, le=60),
    avoid_weekends: bool = False,
    slots: list[str] | None = Query(None),
    center: NotificationCenter = Depends(get_center),
) -> list[datetime]:
    """Conflict-free start times for moving the event to a later day."""
    event = _get_event(center, event_id)
    try:
        return center.suggest_reschedule(
            event, preferred_slots=slots, max_days_out=max_days_out, avoid_weekends=avoid_weekends
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid slot: {exc}") from exc


# ── Conflicts & rules ─────────────────────────────────────────────────


@router.get("/conflicts", response_model=list[Conflict])
def list_conflicts(
    include_resolved: bool = False,
    event_id: str | None = None,
    center: NotificationCenter = Depends(get_center),
) -> list[Conflict]:
    if event_id is not None:
        return center.conflicts.for_event(event_id)
    return center.conflicts.list_all(include_resolved=include_resolved)


@router.post("/conflicts/{conflict_id}/resolve", response_model=Conflict)
def resolve_conflict(conflict_id: str, center: NotificationCenter = Depends(get_center)) -> Conflict:
    try:
        return center.resolve_conflict(conflict_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Conflict not found") from exc


@router.get("/rules", response_model=list[Rule])
def list_rules(center: NotificationCenter = Depends(get_center)) -> list[Rule]:
    return center.catalog.list_all()


@router.patch("/rules/{rule_id}", response_model=Rule)
def update_rule(
    rule_id: str, body: RuleUpdateRequest, center: NotificationCenter = Depends(get_center)
) -> Rule:
    try:
        return center.catalog.update(rule_id, body)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Rule not found") from exc


# ── Reminders ─────────────────────────────────────────────────────────


@router.get("/reminders", response_model=list[Reminder])
def list_reminders(
    event_id: str | None = None,
    status: ReminderStatus | None = None,
    center: NotificationCenter = Depends(get_center),
) -> list[Reminder]:
    return center.reminders.list_all(event_id=event_id, status=status)


@router.post("/reminders/{reminder_id}/acknowledge", response_model=Reminder)
def acknowledge_reminder(
    reminder_id: str, center: NotificationCenter = Depends(get_center)
) -> Reminder:
    try:
        return center.reminders.acknowledge(reminder_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Reminder not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/reminders/{reminder_id}/reschedule", response_model=Reminder)
def reschedule_reminder(
    reminder_id: str,
    body: RescheduleRequest,
    center: NotificationCenter = Depends(get_center),
) -> Reminder:
    try:
        return center.reminders.reschedule(reminder_id, _as_utc(body.scheduled_for, center))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Reminder not found") from exc


@router.delete("/reminders/{reminder_id}", status_code=204)
def cancel_reminder(reminder_id: str, center: NotificationCenter = Depends(get_center)) -> Response:
    center.reminders.cancel(reminder_id)
    return Response(status_code=204)


# ── Notifications ─────────────────────────────────────────────────────


@router.get("/notifications", response_model=list[InAppNotification])
def list_notifications(
    type: list[NotificationType] | None = Query(None),
    category: list[NotificationCategory] | None = Query(None),
    priority: list[NotificationPriority] | None = Query(None),
    read: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    person_id: str | None = None,
    event_id: str | None = None,
    center: NotificationCenter = Depends(get_center),
) -> list[InAppNotification]:
    filters = NotificationFilters(
        type=type,
        category=category,
        priority=priority,
        read=read,
        start=_as_utc(start, center) if start else None,
        end=_as_utc(end, center) if end else None,
        person_id=person_id,
        event_id=event_id,
    )
    return center.notifications.list_all(filters)


@router.get("/notifications/unread-count")
def unread_count(center: NotificationCenter = Depends(get_center)) -> dict:
    return {"unread": center.notifications.unread_count(), "total": len(center.notifications)}


@router.post("/notifications/read-all", status_code=204)
def mark_all_read(center: NotificationCenter = Depends(get_center)) -> Response:
    center.notifications.mark_all_read()
    return Response(status_code=204)


@router.post("/notifications/{notification_id}/read", status_code=204)
def mark_read(notification_id: str, center: NotificationCenter = Depends(get_center)) -> Response:
    try:
        center.notifications.mark_read(notification_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Notification not found") from exc
    return Response(status_code=204)


@router.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: str, center: NotificationCenter = Depends(get_center)
) -> Response:
    try:
        center.notifications.delete(notification_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Notification not found") from exc
    return Response(status_code=204)


@router.post("/notifications/{notification_id}/snooze")
def snooze_notification(
    notification_id: str,
    body: SnoozeRequest,
    center: NotificationCenter = Depends(get_center),
) -> dict:
    """Hide a notification until ``until``: ISO-8601 or e.g. "in 2 hours"."""
    zone = center.config.timezone
    local_now = center.clock.now().astimezone(center.config.zone()).replace(tzinfo=None)
    parsed = dateparser.parse(
        body.until,
        settings={
            "RELATIVE_BASE": local_now,
            "TIMEZONE": zone,
            "RETURN_AS_TIMEZONE_AWARE": True,
            "PREFER_DATES_FROM": "future",
        },
    )
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Could not understand time {body.until!r}")
    until = parsed.astimezone(timezone.utc)
    try:
        center.notifications.snooze(notification_id, until)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Notification not found") from exc
    return {"id": notification_id, "until": until.isoformat()}


# ── Settings & email ──────────────────────────────────────────────────


@router.get("/settings", response_model=NotificationSettings)
def get_settings(center: NotificationCenter = Depends(get_center)) -> NotificationSettings:
    return center.settings.get()


@router.patch("/settings", response_model=NotificationSettings)
def update_settings(
    updates: dict[str, Any] = Body(...), center: NotificationCenter = Depends(get_center)
) -> NotificationSettings:
    try:
        return center.update_settings(updates)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.put("/email/recipients", status_code=204)
def set_recipients(
    recipients: list[str] = Body(...), center: NotificationCenter = Depends(get_center)
) -> Response:
    center.set_email_recipients(recipients)
    return Response(status_code=204)


@router.post("/email/test")
def test_email_delivery(center: NotificationCenter = Depends(get_center)) -> dict:
    return {"success": center.test_email()}


@router.post("/email/daily-digest")
def send_daily_digest(
    day: date | None = None, center: NotificationCenter = Depends(get_center)
) -> dict:
    result = center.send_daily_digest(center.events.list_all(), day)
    if result is None:
        return {"sent": False, "reason": "daily digest is not enabled"}
    return {"sent": result.success, "error": result.error}


# ── Simulated clock ───────────────────────────────────────────────────


@router.post("/tick")
def tick(now: datetime | None = None, center: NotificationCenter = Depends(get_center)) -> dict:
    """Fire every due timer.

    Pass *now* to move a simulated (frozen) clock first; a real clock
    cannot be moved.
    """
    if now is not None:
        if not isinstance(center.clock, FrozenClock):
            raise HTTPException(status_code=400, detail="Clock cannot be set")
        center.clock.set(_as_utc(now, center))
    fired = center.tick()
    return {"time": center.clock.now().isoformat(), "timers_fired": fired}


# ── Application ───────────────────────────────────────────────────────


async def _ticker(center: NotificationCenter, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            center.tick()
        except Exception:
            logger.exception("Timer callback failed")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    center: NotificationCenter = app.state.center
    setup_logging(center.config.log_level)
    center.start()
    task = asyncio.create_task(_ticker(center, center.config.tick_interval_seconds))
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        app.state.handlers.close()


def create_app(center: NotificationCenter | None = None) -> FastAPI:
    center = center or build_center()
    application = FastAPI(title="Family Hub Notification Service", lifespan=lifespan)
    application.state.center = center
    application.state.handlers = HandlerRegistry(center.bus, center)
    application.include_router(router)
    return application


app = create_app()
