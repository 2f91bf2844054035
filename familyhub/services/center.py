"""NotificationCenter: the wired-up engine, plus the email digests.

``build_center`` assembles every service from an ``AppConfig``; tests and
the HTTP app pass in their own clock, timers and state store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timedelta
from typing import Any

import httpx

from familyhub.config import AppConfig
from familyhub.domain.bus import EventBus
from familyhub.domain.events import ConflictsDetected
from familyhub.domain.models import (
    ActionStyle,
    Conflict,
    DeliveryKind,
    EmailFrequency,
    Event,
    InAppNotification,
    NotificationAction,
    NotificationCategory,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
    Person,
    Severity,
)
from familyhub.repos.memory import EventRepository, PersonRepository
from familyhub.repos.state import JsonFileStateStore, MemoryStateStore, StateStore
from familyhub.services.conflict_log import ConflictLog
from familyhub.services.conflicts import ConflictDetector
from familyhub.services.delivery import (
    ChannelRouter,
    ConsolePushChannel,
    DeliveryResult,
    EmailChannel,
    InAppChannel,
)
from familyhub.services.notifications import NotificationStore
from familyhub.services.recurrence import candidates_around
from familyhub.services.reminders import ReminderScheduler
from familyhub.services.resolutions import ResolutionAdvisor
from familyhub.services.rules import RuleCatalog
from familyhub.services.settings import SettingsService
from familyhub.services.suggestions import RescheduleSuggester
from familyhub.services.timers import Clock, ManualTimers, SystemClock, Timers

logger = logging.getLogger(__name__)

_NOTIFICATION_PRIORITY = {
    Severity.CRITICAL: NotificationPriority.URGENT,
    Severity.MAJOR: NotificationPriority.HIGH,
    Severity.MINOR: NotificationPriority.MEDIUM,
}

RECENT_NOTIFICATIONS_IN_DIGEST = 10


class NotificationCenter:
    def __init__(
        self,
        *,
        config: AppConfig,
        clock: Clock,
        timers: Timers,
        state_store: StateStore,
        bus: EventBus,
        events: EventRepository,
        people: PersonRepository,
        settings: SettingsService,
        catalog: RuleCatalog,
        detector: ConflictDetector,
        suggester: RescheduleSuggester,
        conflicts: ConflictLog,
        notifications: NotificationStore,
        router: ChannelRouter,
        email: EmailChannel,
        push: ConsolePushChannel,
        reminders: ReminderScheduler,
    ) -> None:
        self.config = config
        self.clock = clock
        self.timers = timers
        self.state_store = state_store
        self.bus = bus
        self.events = events
        self.people = people
        self.settings = settings
        self.catalog = catalog
        self.detector = detector
        self.suggester = suggester
        self.conflicts = conflicts
        self.notifications = notifications
        self.router = router
        self.email = email
        self.push = push
        self.reminders = reminders

    def start(self) -> None:
        """Load persisted settings, notifications and reminders."""
        self.settings.load()
        self.notifications.restore()
        self.reminders.restore()

    def tick(self) -> int:
        """Fire every due timer. Only meaningful with ``ManualTimers``."""
        if isinstance(self.timers, ManualTimers):
            return self.timers.run_due()
        return 0

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def candidates_for(self, event: Event) -> list[Event]:
        return candidates_around(event, self.events.list_all())

    def detect_event_conflicts(
        self, event: Event, candidates: Sequence[Event] | None = None
    ) -> list[Conflict]:
        """Detect, record and announce conflicts for a new or edited event."""
        if candidates is None:
            candidates = self.candidates_for(event)
        found = self.detector.detect(event, candidates, self.people.list_all())
        self.conflicts.record(event.id, found)
        if not found:
            return found

        email_on = self.settings.current.channels.email
        for conflict in found:
            self.notifications.add(self._conflict_notification(conflict))
            if email_on and conflict.severity != Severity.MINOR:
                self._send_email({"type": "conflict_alert", "conflictData": conflict.model_dump(mode="json")})

        self.bus.publish(ConflictsDetected(event_id=event.id, conflict_ids=[c.id for c in found]))
        return found

    def _conflict_notification(self, conflict: Conflict) -> InAppNotification:
        label = conflict.category.value.replace("_", " ")
        return InAppNotification(
            type=NotificationType.CONFLICT,
            title=f"Conflict Detected: {conflict.new_event.title}",
            message=(
                f"{label} conflict detected with "
                f"{len(conflict.conflicting_events)} event(s)"
            ),
            priority=_NOTIFICATION_PRIORITY[conflict.severity],
            category=NotificationCategory.CONFLICT,
            action_required=True,
            related_event_id=conflict.new_event.id,
            actions=[
                NotificationAction(
                    id="resolve",
                    label="Resolve Conflict",
                    style=ActionStyle.PRIMARY,
                    action="resolve_conflict",
                    data={"conflict_id": conflict.id},
                ),
                NotificationAction(id="ignore", label="Ignore", action="dismiss"),
            ],
            metadata={"conflict_id": conflict.id},
        )

    def resolve_conflict(self, conflict_id: str) -> Conflict:
        return self.conflicts.resolve(conflict_id)

    def suggest_reschedule(
        self,
        event: Event,
        preferred_slots: Sequence[str] | None = None,
        max_days_out: int = 7,
        avoid_weekends: bool = False,
    ) -> list[datetime]:
        candidates = [
            c for c in self.candidates_for(event) if c.shares_scope_with(event)
        ]
        return self.suggester.suggest(
            event,
            candidates,
            preferred_slots=preferred_slots,
            max_days_out=max_days_out,
            avoid_weekends=avoid_weekends,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_settings(self, updates: Mapping[str, Any]) -> NotificationSettings:
        """Apply a partial settings update and re-evaluate armed reminders."""
        updated = self.settings.update(updates)
        self.reminders.rearm_all()
        return updated

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def set_email_recipients(self, recipients: Sequence[str]) -> None:
        self.email.set_recipients(recipients)

    def _send_email(self, payload: dict[str, Any]) -> DeliveryResult:
        result = self.router.deliver(DeliveryKind.EMAIL, payload)
        if not result.success:
            logger.warning("Email %r not sent: %s", payload.get("type"), result.error)
        return result

    def send_email_reminder(self, event: Event, minutes_before: int) -> DeliveryResult | None:
        if not self.settings.current.channels.email:
            return None
        return self._send_email(
            {
                "type": "event_reminder",
                "event": event.model_dump(mode="json"),
                "reminderTime": minutes_before,
            }
        )

    def send_daily_digest(
        self, events: Sequence[Event], day: date | None = None
    ) -> DeliveryResult | None:
        settings = self.settings.current
        if not settings.channels.email or settings.email_frequency != EmailFrequency.DAILY_DIGEST:
            return None
        day = day or self.clock.now().date()
        recent = self.notifications.list_all()[:RECENT_NOTIFICATIONS_IN_DIGEST]
        return self._send_email(
            {
                "type": "daily_digest",
                "events": [e.model_dump(mode="json") for e in events if e.date == day],
                "notifications": [n.model_dump(mode="json") for n in recent],
                "date": day.isoformat(),
            }
        )

    def send_weekly_summary(
        self,
        events: Sequence[Event],
        people: Sequence[Person],
        week_start: date,
    ) -> DeliveryResult | None:
        settings = self.settings.current
        if not settings.channels.email or settings.email_frequency != EmailFrequency.WEEKLY_DIGEST:
            return None
        week_end = week_start + timedelta(days=7)
        return self._send_email(
            {
                "type": "weekly_summary",
                "events": [
                    e.model_dump(mode="json") for e in events if week_start <= e.date < week_end
                ],
                "people": [p.model_dump(mode="json") for p in people],
                "weekStart": week_start.isoformat(),
            }
        )

    def test_email(self) -> bool:
        return self._send_email({"type": "test"}).success


def build_center(
    config: AppConfig | None = None,
    *,
    clock: Clock | None = None,
    timers: Timers | None = None,
    state_store: StateStore | None = None,
    email_client: httpx.Client | None = None,
    people: Sequence[Person] = (),
) -> NotificationCenter:
    """Assemble a NotificationCenter; nothing is loaded until ``start()``."""
    config = config or AppConfig()
    clock = clock or SystemClock()
    timers = timers or ManualTimers(clock)
    if state_store is None:
        state_store = (
            JsonFileStateStore(config.state_file) if config.state_file else MemoryStateStore()
        )
    bus = EventBus()

    settings = SettingsService(state_store)
    catalog = RuleCatalog()
    notifications = NotificationStore(
        state_store, timers, clock, bus=bus, capacity=config.notification_capacity
    )
    push = ConsolePushChannel(permission_granted=config.push_permission)
    email = EmailChannel(config.email_endpoint, config.email_recipients, client=email_client)
    router = ChannelRouter(
        {
            DeliveryKind.PUSH: push,
            DeliveryKind.EMAIL: email,
            DeliveryKind.IN_APP: InAppChannel(notifications),
        }
    )

    return NotificationCenter(
        config=config,
        clock=clock,
        timers=timers,
        state_store=state_store,
        bus=bus,
        events=EventRepository(),
        people=PersonRepository(list(people)),
        settings=settings,
        catalog=catalog,
        detector=ConflictDetector(catalog, ResolutionAdvisor(), clock=clock),
        suggester=RescheduleSuggester(),
        conflicts=ConflictLog(timers, clock, retention_hours=config.conflict_retention_hours),
        notifications=notifications,
        router=router,
        email=email,
        push=push,
        reminders=ReminderScheduler(
            settings,
            router,
            notifications,
            timers,
            clock,
            state_store,
            tz=config.zone(),
            bus=bus,
        ),
    )
