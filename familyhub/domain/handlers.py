"""Domain event handlers: wired up at application startup."""

from __future__ import annotations

import logging
from typing import Callable

from familyhub.domain.bus import EventBus
from familyhub.domain.events import (
    EventCreated,
    EventDeleted,
    EventUpdated,
    ReminderDelivered,
)
from familyhub.services.center import NotificationCenter

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Connects calendar mutations to conflict detection and reminders."""

    def __init__(self, bus: EventBus, center: NotificationCenter) -> None:
        self.bus = bus
        self.center = center
        self._unsubscribers: list[Callable[[], None]] = []
        self._register()

    def _register(self) -> None:
        self._unsubscribers = [
            self.bus.subscribe(EventCreated, self.on_event_saved),
            self.bus.subscribe(EventUpdated, self.on_event_saved),
            self.bus.subscribe(EventDeleted, self.on_event_deleted),
            self.bus.subscribe(ReminderDelivered, self.on_reminder_delivered),
        ]

    def close(self) -> None:
        """Detach every handler; later bus events are no longer acted on."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_saved(self, event: EventCreated | EventUpdated) -> None:
        stored = self.center.events.get(event.event_id)
        if stored is None:
            return

        # 1. Conflicts against the rest of the calendar
        self.center.detect_event_conflicts(stored)

        # 2. Reminders; replaces any from a previous version of the event
        self.center.reminders.schedule_for_event(stored)

    def on_event_deleted(self, event: EventDeleted) -> None:
        cancelled = self.center.reminders.cancel_for_event(event.event_id)
        dropped = self.center.conflicts.forget_event(event.event_id)
        logger.info(
            "Event %s deleted: %d reminder(s) cancelled, %d conflict(s) dropped",
            event.event_id,
            cancelled,
            dropped,
        )

    def on_reminder_delivered(self, event: ReminderDelivered) -> None:
        stored = self.center.events.get(event.event_id)
        if stored is None:
            logger.warning(
                "Reminder %s delivered for unknown event %s", event.reminder_id, event.event_id
            )
            return
        logger.info(
            "Reminder %s delivered for %r on %s at %s",
            event.reminder_id,
            stored.title,
            stored.date.isoformat(),
            stored.time.strftime("%H:%M"),
        )
