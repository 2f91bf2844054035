"""In-app notification feed: capped, newest first, persisted on every change.

Snoozing removes the notification from the feed entirely and puts it back
at the front when the snooze timer fires. While snoozed it is invisible to
every query. Snoozed entries are persisted with their wake-up time, so a
restart re-arms them, or puts them straight back if the time has passed.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime

from pydantic import ValidationError

from familyhub.domain.bus import EventBus
from familyhub.domain.errors import NotificationNotFoundError
from familyhub.domain.events import NotificationsChanged
from familyhub.domain.models import (
    InAppNotification,
    NotificationFilters,
    SnoozedNotification,
)
from familyhub.repos.state import NOTIFICATIONS_KEY, SNOOZED_KEY, StateStore
from familyhub.services.timers import Clock, TimerHandle, Timers

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


def _matches(notification: InAppNotification, filters: NotificationFilters) -> bool:
    if filters.type and notification.type not in filters.type:
        return False
    if filters.category and notification.category not in filters.category:
        return False
    if filters.priority and notification.priority not in filters.priority:
        return False
    if filters.read is not None and notification.read != filters.read:
        return False
    if filters.start and notification.timestamp < filters.start:
        return False
    if filters.end and notification.timestamp > filters.end:
        return False
    if filters.person_id and notification.related_person_id != filters.person_id:
        return False
    if filters.event_id and notification.related_event_id != filters.event_id:
        return False
    return True


class NotificationStore:
    def __init__(
        self,
        state_store: StateStore,
        timers: Timers,
        clock: Clock,
        bus: EventBus | None = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self._state_store = state_store
        self._timers = timers
        self._clock = clock
        self._bus = bus
        self.capacity = capacity
        self._feed: deque[InAppNotification] = deque(maxlen=capacity)
        self._snoozed: dict[str, tuple[SnoozedNotification, TimerHandle]] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self) -> int:
        """Reload the feed and the snoozed entries; returns the feed size."""
        for _, handle in self._snoozed.values():
            handle.cancel()
        self._snoozed.clear()

        stored = self._state_store.load(NOTIFICATIONS_KEY) or []
        restored = []
        for raw in stored:
            try:
                restored.append(InAppNotification.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable notification record: %s", exc)
        restored.sort(key=lambda n: n.timestamp, reverse=True)
        self._feed = deque(restored[: self.capacity], maxlen=self.capacity)

        snoozed = []
        for raw in self._state_store.load(SNOOZED_KEY) or []:
            try:
                snoozed.append(SnoozedNotification.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable snoozed notification: %s", exc)

        now = self._clock.now()
        woken = 0
        for entry in sorted(snoozed, key=lambda s: s.until):
            if entry.until <= now:
                self._feed.appendleft(entry.notification)
                woken += 1
            else:
                self._arm_wakeup(entry)
        if woken:
            logger.info("%d snooze(s) ran out while stopped", woken)
            self._changed()
        return len(self._feed)

    def _changed(self) -> None:
        self._state_store.save(
            NOTIFICATIONS_KEY, [n.model_dump(mode="json") for n in self._feed]
        )
        self._state_store.save(
            SNOOZED_KEY, [entry.model_dump(mode="json") for entry, _ in self._snoozed.values()]
        )
        if self._bus is not None:
            self._bus.publish(NotificationsChanged(total=len(self._feed), unread=self.unread_count()))

    # ------------------------------------------------------------------
    # Feed operations
    # ------------------------------------------------------------------

    def add(self, notification: InAppNotification) -> InAppNotification:
        stored = notification.model_copy(update={"timestamp": self._clock.now(), "read": False})
        if len(self._feed) == self.capacity:
            logger.debug("Notification feed full, evicting %s", self._feed[-1].id)
        self._feed.appendleft(stored)
        self._changed()
        return stored.model_copy()

    def get(self, notification_id: str) -> InAppNotification:
        return self._find(notification_id).model_copy()

    def list_all(self, filters: NotificationFilters | None = None) -> list[InAppNotification]:
        items = list(self._feed)
        if filters is not None:
            items = [n for n in items if _matches(n, filters)]
        return [n.model_copy() for n in items]

    def __len__(self) -> int:
        return len(self._feed)

    def unread_count(self) -> int:
        return sum(1 for n in self._feed if not n.read)

    def mark_read(self, notification_id: str) -> None:
        self._find(notification_id).read = True
        self._changed()

    def mark_all_read(self) -> None:
        for notification in self._feed:
            notification.read = True
        self._changed()

    def delete(self, notification_id: str) -> None:
        """Remove a notification; a snoozed one is dropped and never returns."""
        snoozed = self._snoozed.pop(notification_id, None)
        if snoozed is not None:
            snoozed[1].cancel()
            self._changed()
            return
        notification = self._find(notification_id)
        self._feed.remove(notification)
        self._changed()

    def snooze(self, notification_id: str, until: datetime) -> None:
        """Hide a notification until *until*, then re-insert it at the front.

        A time that is not in the future leaves the feed unchanged.
        """
        notification = self._find(notification_id)
        if until <= self._clock.now():
            logger.debug("Snooze of %s until %s is already over", notification_id, until)
            return
        self._feed.remove(notification)
        self._arm_wakeup(SnoozedNotification(notification=notification, until=until))
        logger.info("Notification %s snoozed until %s", notification_id, until.isoformat())
        self._changed()

    def snoozed_ids(self) -> list[str]:
        return list(self._snoozed)

    def _arm_wakeup(self, entry: SnoozedNotification) -> None:
        notification_id = entry.notification.id
        handle = self._timers.call_at(entry.until, lambda: self._wake(notification_id))
        self._snoozed[notification_id] = (entry, handle)

    def _wake(self, notification_id: str) -> None:
        entry = self._snoozed.pop(notification_id, None)
        if entry is None:
            return
        self._feed.appendleft(entry[0].notification)
        self._changed()

    def _find(self, notification_id: str) -> InAppNotification:
        for notification in self._feed:
            if notification.id == notification_id:
                return notification
        raise NotificationNotFoundError(notification_id)
