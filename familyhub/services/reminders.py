"""Service for creating, arming, and firing event reminders.

Lifecycle of a reminder::

    pending --deliver ok--> sent --acknowledge--> acknowledged
    pending --deliver error--> failed
    any     --reschedule--> pending   (sent_at cleared, timer re-armed)

A failed reminder is never retried on its own; the caller retries with
``reschedule``, which bumps ``retry_count``.

Each armed reminder owns one timer handle. Every code path that arms a
timer cancels the previous handle first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from pydantic import ValidationError

from familyhub.domain.bus import EventBus
from familyhub.domain.errors import InvalidTransitionError, ReminderNotFoundError
from familyhub.domain.events import ReminderDelivered
from familyhub.domain.models import (
    ActionStyle,
    DeliveryKind,
    Event,
    InAppNotification,
    NotificationAction,
    NotificationCategory,
    NotificationType,
    Reminder,
    ReminderMetadata,
    ReminderStatus,
)
from familyhub.repos.state import REMINDERS_KEY, StateStore
from familyhub.services.delivery import DeliveryResult, DeliverySink
from familyhub.services.notifications import NotificationStore
from familyhub.services.quiet_hours import in_quiet_hours, quiet_hours_end
from familyhub.services.settings import SettingsService
from familyhub.services.timers import Clock, TimerHandle, Timers

logger = logging.getLogger(__name__)


def format_lead_time(minutes: int) -> str:
    """Human wording for a reminder offset: 15 minutes, 1 hour, 2 days, 1h 30m."""
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours, remaining = divmod(minutes, 60)
    if hours >= 24:
        days = hours // 24
        if remaining == 0 and hours % 24 == 0:
            return f"{days} day{'s' if days != 1 else ''}"
    if remaining == 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{hours}h {remaining}m"


class ReminderScheduler:
    def __init__(
        self,
        settings: SettingsService,
        sink: DeliverySink,
        notifications: NotificationStore,
        timers: Timers,
        clock: Clock,
        state_store: StateStore,
        tz: tzinfo = timezone.utc,
        bus: EventBus | None = None,
    ) -> None:
        self._settings = settings
        self._sink = sink
        self._notifications = notifications
        self._timers = timers
        self._clock = clock
        self._state_store = state_store
        self._tz = tz
        self._bus = bus
        self._reminders: dict[str, Reminder] = {}
        self._handles: dict[str, TimerHandle] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, reminder_id: str) -> Reminder:
        return self._find(reminder_id).model_copy(deep=True)

    def list_all(
        self, event_id: str | None = None, status: ReminderStatus | None = None
    ) -> list[Reminder]:
        return sorted(
            (
                r.model_copy(deep=True)
                for r in self._reminders.values()
                if (event_id is None or r.event_id == event_id)
                and (status is None or r.status == status)
            ),
            key=lambda r: r.scheduled_for,
        )

    def is_armed(self, reminder_id: str) -> bool:
        return reminder_id in self._handles

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def event_start(self, event: Event) -> datetime:
        """The event's local wall-clock start as an aware UTC datetime."""
        return event.start.replace(tzinfo=self._tz).astimezone(timezone.utc)

    def schedule_for_event(self, event: Event) -> list[Reminder]:
        """Replace every reminder of *event* with one per configured offset."""
        self.cancel_for_event(event.id)

        start = self.event_start(event)
        kind = self._default_kind()
        created: list[Reminder] = []
        for minutes_before in self._settings.offsets_for(event.type):
            metadata = ReminderMetadata(
                title=f"Upcoming: {event.title}",
                body=f"{event.title} starts in {format_lead_time(minutes_before)}",
                icon="/icons/calendar-icon.png",
                tag=f"event-{event.id}",
                data={"event_id": event.id, "type": "reminder"},
            )
            reminder = self.schedule_reminder(
                event.id,
                start - timedelta(minutes=minutes_before),
                kind=kind,
                metadata=metadata,
                person_id=None if event.is_family else event.person,
            )
            if reminder is not None:
                created.append(reminder)
        logger.info("Scheduled %d reminder(s) for event %s", len(created), event.id)
        return created

    def schedule_reminder(
        self,
        event_id: str,
        scheduled_for: datetime,
        kind: DeliveryKind = DeliveryKind.PUSH,
        metadata: ReminderMetadata | None = None,
        person_id: str | None = None,
    ) -> Reminder | None:
        """Record and arm a reminder; returns None if *scheduled_for* has passed."""
        if scheduled_for <= self._clock.now():
            logger.debug("Dropping reminder for %s at %s: already past", event_id, scheduled_for)
            return None
        reminder = Reminder(
            event_id=event_id,
            person_id=person_id,
            kind=kind,
            scheduled_for=scheduled_for,
            metadata=metadata,
        )
        self._reminders[reminder.id] = reminder
        self._arm(reminder)
        self._persist()
        return reminder.model_copy(deep=True)

    def reschedule(self, reminder_id: str, new_time: datetime) -> Reminder:
        """Re-arm a reminder for *new_time*, returning it to ``pending``.

        A time that is not in the future fires on the next timer turn.
        """
        reminder = self._find(reminder_id)
        if reminder.status == ReminderStatus.FAILED:
            reminder.retry_count += 1
        self._retime(reminder, new_time)
        self._persist()
        logger.info("Reminder %s rescheduled for %s", reminder_id, new_time.isoformat())
        return reminder.model_copy(deep=True)

    def cancel(self, reminder_id: str) -> None:
        """Remove a reminder whatever its state. Unknown ids are ignored."""
        handle = self._handles.pop(reminder_id, None)
        if handle is not None:
            handle.cancel()
        if self._reminders.pop(reminder_id, None) is not None:
            self._persist()

    def cancel_for_event(self, event_id: str) -> int:
        ids = [r.id for r in self._reminders.values() if r.event_id == event_id]
        for reminder_id in ids:
            self.cancel(reminder_id)
        return len(ids)

    def acknowledge(self, reminder_id: str) -> Reminder:
        """The user interacted with a delivered reminder."""
        reminder = self._find(reminder_id)
        if reminder.status == ReminderStatus.ACKNOWLEDGED:
            return reminder.model_copy(deep=True)
        if reminder.status != ReminderStatus.SENT:
            raise InvalidTransitionError(
                f"Reminder {reminder_id} is {reminder.status}, only sent reminders can be acknowledged"
            )
        reminder.status = ReminderStatus.ACKNOWLEDGED
        reminder.acknowledged_at = self._clock.now()
        self._persist()

        metadata = reminder.metadata
        self._notifications.add(
            InAppNotification(
                type=NotificationType.REMINDER,
                title=metadata.title if metadata else "Event Reminder",
                message=metadata.body if metadata else "You have an upcoming event",
                category=NotificationCategory.EVENT,
                related_event_id=reminder.event_id,
                related_person_id=reminder.person_id,
                actions=[
                    NotificationAction(
                        id="view", label="View Event", style=ActionStyle.PRIMARY, action="view_event"
                    ),
                    NotificationAction(id="dismiss", label="Dismiss", action="dismiss"),
                ],
            )
        )
        return reminder.model_copy(deep=True)

    def restore(self) -> int:
        """Load persisted reminders and re-arm every pending one."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._reminders.clear()

        for raw in self._state_store.load(REMINDERS_KEY) or []:
            try:
                reminder = Reminder.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping unreadable reminder record: %s", exc)
                continue
            self._reminders[reminder.id] = reminder
            if reminder.status == ReminderStatus.PENDING:
                self._arm(reminder)
        logger.info("Restored %d reminder(s), %d armed", len(self._reminders), len(self._handles))
        return len(self._reminders)

    def rearm_all(self) -> int:
        """Re-evaluate every pending reminder, e.g. after a settings change."""
        for reminder in self._reminders.values():
            if reminder.status == ReminderStatus.PENDING:
                self._arm(reminder)
        return len(self._handles)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _default_kind(self) -> DeliveryKind:
        """Push when it is switched on and the OS allows it, otherwise in-app."""
        if self._settings.current.channels.push and self._sink.has_permission(DeliveryKind.PUSH):
            return DeliveryKind.PUSH
        return DeliveryKind.IN_APP

    def _can_deliver(self, kind: DeliveryKind) -> bool:
        settings = self._settings.current
        if not settings.enabled:
            return False
        enabled = {
            DeliveryKind.PUSH: settings.channels.push,
            DeliveryKind.EMAIL: settings.channels.email,
            DeliveryKind.IN_APP: settings.channels.in_app,
        }[kind]
        return enabled and self._sink.has_permission(kind)

    def _arm(self, reminder: Reminder) -> None:
        previous = self._handles.pop(reminder.id, None)
        if previous is not None:
            previous.cancel()
        if not self._can_deliver(reminder.kind):
            logger.info(
                "Reminder %s recorded without a timer: %s delivery unavailable",
                reminder.id,
                reminder.kind,
            )
            return
        reminder_id = reminder.id
        self._handles[reminder_id] = self._timers.call_at(
            reminder.scheduled_for, lambda: self._fire(reminder_id)
        )

    def _retime(self, reminder: Reminder, new_time: datetime) -> None:
        reminder.scheduled_for = new_time
        reminder.status = ReminderStatus.PENDING
        reminder.sent_at = None
        self._arm(reminder)

    def _fire(self, reminder_id: str) -> None:
        self._handles.pop(reminder_id, None)
        reminder = self._reminders.get(reminder_id)
        if reminder is None or reminder.status != ReminderStatus.PENDING:
            return

        settings = self._settings.current
        local_now = self._clock.now().astimezone(self._tz)
        if in_quiet_hours(local_now, settings.quiet_hours):
            resume_at = quiet_hours_end(local_now, settings.quiet_hours).astimezone(timezone.utc)
            logger.info("Reminder %s deferred by quiet hours until %s", reminder_id, resume_at.isoformat())
            self._retime(reminder, resume_at)
            self._persist()
            return

        result = self._sink.deliver(reminder.kind, self._payload(reminder))
        self._record_delivery(reminder, result)

    def _payload(self, reminder: Reminder) -> dict:
        metadata = reminder.metadata or ReminderMetadata(
            title="Event Reminder", body="You have an upcoming event"
        )
        payload = metadata.model_dump(mode="json")
        payload["related_event_id"] = reminder.event_id
        payload["related_person_id"] = reminder.person_id
        if reminder.kind == DeliveryKind.EMAIL:
            payload = {"type": "event_reminder", "reminder": reminder.model_dump(mode="json")}
        return payload

    def _record_delivery(self, reminder: Reminder, result: DeliveryResult) -> None:
        if result.success:
            reminder.status = ReminderStatus.SENT
            reminder.sent_at = self._clock.now()
            reminder.error_message = None
            logger.info("Reminder %s delivered via %s", reminder.id, reminder.kind)
        else:
            reminder.status = ReminderStatus.FAILED
            reminder.error_message = result.error or "Unknown error"
            logger.warning("Reminder %s failed: %s", reminder.id, reminder.error_message)
        self._persist()
        if result.success and self._bus is not None:
            self._bus.publish(ReminderDelivered(event_id=reminder.event_id, reminder_id=reminder.id))

    def _persist(self) -> None:
        self._state_store.save(
            REMINDERS_KEY, [r.model_dump(mode="json") for r in self._reminders.values()]
        )

    def _find(self, reminder_id: str) -> Reminder:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            raise ReminderNotFoundError(reminder_id)
        return reminder
