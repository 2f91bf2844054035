"""Tests for the reminder scheduler: arming, quiet hours, delivery, lifecycle."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest
from dateutil import tz

from familyhub.domain.bus import EventBus
from familyhub.domain.errors import InvalidTransitionError, ReminderNotFoundError
from familyhub.domain.events import ReminderDelivered
from familyhub.domain.models import (
    DeliveryKind,
    Event,
    EventType,
    NotificationType,
    ReminderStatus,
)
from familyhub.repos.state import REMINDERS_KEY, MemoryStateStore
from familyhub.services.delivery import DeliveryResult, DeliverySink
from familyhub.services.notifications import NotificationStore
from familyhub.services.reminders import ReminderScheduler, format_lead_time
from familyhub.services.settings import SettingsService
from familyhub.services.timers import FrozenClock, ManualTimers

_NOW = datetime(2025, 1, 9, 12, 0, tzinfo=timezone.utc)


class RecordingSink(DeliverySink):
    def __init__(self) -> None:
        self.delivered: list[tuple[DeliveryKind, dict]] = []
        self.permissions = {kind: True for kind in DeliveryKind}
        self.fail_with: str | None = None

    def deliver(self, kind, payload):
        if self.fail_with:
            return DeliveryResult.failed(self.fail_with)
        self.delivered.append((kind, dict(payload)))
        return DeliveryResult.ok()

    def has_permission(self, kind):
        return self.permissions[kind]


@pytest.fixture()
def env():
    """Fresh clock, timers, stores and scheduler for each test."""
    clock = FrozenClock(_NOW)
    timers = ManualTimers(clock)
    state = MemoryStateStore()
    bus = EventBus()
    settings = SettingsService(state)
    notifications = NotificationStore(state, timers, clock, bus=bus)
    sink = RecordingSink()
    scheduler = ReminderScheduler(settings, sink, notifications, timers, clock, state, bus=bus)

    class Env:
        pass

    e = Env()
    e.clock = clock
    e.timers = timers
    e.state = state
    e.bus = bus
    e.settings = settings
    e.notifications = notifications
    e.sink = sink
    e.scheduler = scheduler
    return e


def _make_event(**overrides) -> Event:
    defaults = dict(
        title="Swimming",
        person="alice",
        date=date(2025, 1, 10),
        time=time(9, 0),
        duration=60,
        type=EventType.SPORT,
    )
    defaults.update(overrides)
    return Event(**defaults)


def _advance_to(env, when: datetime) -> int:
    env.clock.set(when)
    return env.timers.run_due()


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def test_schedule_for_event_uses_category_offsets(env):
    """Sport events use the activities offsets: 60 and 15 minutes before."""
    event = _make_event()
    reminders = env.scheduler.schedule_for_event(event)

    start = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)
    assert sorted(r.scheduled_for for r in reminders) == [
        start - timedelta(minutes=60),
        start - timedelta(minutes=15),
    ]
    assert all(r.status == ReminderStatus.PENDING for r in reminders)
    assert all(r.kind == DeliveryKind.PUSH for r in reminders)
    assert reminders[0].metadata.title == "Upcoming: Swimming"
    assert reminders[0].metadata.tag == f"event-{event.id}"
    assert env.timers.pending() == 2


def test_past_offsets_are_dropped(env):
    """A medical appointment tomorrow keeps only the offsets still ahead."""
    event = _make_event(type=EventType.APPOINTMENT)
    reminders = env.scheduler.schedule_for_event(event)
    # 7 days and 1 day before are already past; only 60 minutes before remains.
    assert [r.scheduled_for for r in reminders] == [
        datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)
    ]


def test_reminder_in_the_past_is_never_recorded(env):
    assert env.scheduler.schedule_reminder("evt", _NOW - timedelta(minutes=1)) is None
    assert env.scheduler.schedule_reminder("evt", _NOW) is None
    assert env.scheduler.list_all() == []
    assert env.timers.pending() == 0


def test_rescheduling_an_event_replaces_its_reminders(env):
    event = _make_event()
    env.scheduler.schedule_for_event(event)
    env.scheduler.schedule_for_event(event)

    assert len(env.scheduler.list_all(event_id=event.id)) == 2
    assert env.timers.pending() == 2


def test_event_time_is_read_in_configured_zone(env):
    scheduler = ReminderScheduler(
        env.settings,
        env.sink,
        env.notifications,
        env.timers,
        env.clock,
        env.state,
        tz=tz.gettz("America/New_York"),
    )
    reminders = scheduler.schedule_for_event(_make_event(type=EventType.OTHER))
    # 09:00 in New York (UTC-5 in January) is 14:00 UTC; reminder one hour before.
    assert reminders[0].scheduled_for == datetime(2025, 1, 10, 13, 0, tzinfo=timezone.utc)


def test_format_lead_time():
    assert format_lead_time(1) == "1 minute"
    assert format_lead_time(15) == "15 minutes"
    assert format_lead_time(60) == "1 hour"
    assert format_lead_time(90) == "1h 30m"
    assert format_lead_time(1440) == "1 day"
    assert format_lead_time(10080) == "7 days"


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


def test_due_reminder_is_delivered(env):
    delivered = []
    env.bus.subscribe(ReminderDelivered, delivered.append)
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))

    assert _advance_to(env, _NOW + timedelta(minutes=59)) == 0
    assert _advance_to(env, _NOW + timedelta(hours=1)) == 1

    stored = env.scheduler.get(reminder.id)
    assert stored.status == ReminderStatus.SENT
    assert stored.sent_at == _NOW + timedelta(hours=1)
    assert len(env.sink.delivered) == 1
    assert delivered == [ReminderDelivered(event_id="evt", reminder_id=reminder.id)]


def test_failed_delivery_is_not_retried(env):
    env.sink.fail_with = "device offline"
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))

    _advance_to(env, _NOW + timedelta(hours=2))

    stored = env.scheduler.get(reminder.id)
    assert stored.status == ReminderStatus.FAILED
    assert stored.error_message == "device offline"
    assert env.timers.pending() == 0


def test_reschedule_failed_reminder_counts_retry(env):
    env.sink.fail_with = "device offline"
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    _advance_to(env, _NOW + timedelta(hours=1))
    env.sink.fail_with = None

    rescheduled = env.scheduler.reschedule(reminder.id, _NOW + timedelta(hours=3))
    assert rescheduled.status == ReminderStatus.PENDING
    assert rescheduled.retry_count == 1

    _advance_to(env, _NOW + timedelta(hours=3))
    assert env.scheduler.get(reminder.id).status == ReminderStatus.SENT


def test_reschedule_sent_reminder_clears_sent_at(env):
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    _advance_to(env, _NOW + timedelta(hours=1))

    rescheduled = env.scheduler.reschedule(reminder.id, _NOW + timedelta(hours=5))

    assert rescheduled.status == ReminderStatus.PENDING
    assert rescheduled.sent_at is None
    assert rescheduled.retry_count == 0


def test_rearm_cancels_previous_timer(env):
    """Moving a reminder twice must deliver it exactly once, at the last time."""
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    env.scheduler.reschedule(reminder.id, _NOW + timedelta(hours=2))
    env.scheduler.reschedule(reminder.id, _NOW + timedelta(hours=3))

    _advance_to(env, _NOW + timedelta(hours=2, minutes=30))
    assert env.sink.delivered == []

    _advance_to(env, _NOW + timedelta(hours=3))
    assert len(env.sink.delivered) == 1
    assert env.timers.pending() == 0


def test_reschedule_unknown_reminder(env):
    with pytest.raises(ReminderNotFoundError):
        env.scheduler.reschedule("missing", _NOW + timedelta(hours=1))


def test_reschedule_into_the_past_fires_on_next_tick(env):
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    env.scheduler.reschedule(reminder.id, _NOW - timedelta(minutes=5))
    assert env.timers.run_due() == 1
    assert env.scheduler.get(reminder.id).status == ReminderStatus.SENT


# ---------------------------------------------------------------------------
# Quiet hours
# ---------------------------------------------------------------------------


def test_quiet_hours_defer_to_window_end(env):
    """A reminder due at 23:00 with quiet hours 22:00-07:00 moves to 07:00."""
    eleven_pm = datetime(2025, 1, 9, 23, 0, tzinfo=timezone.utc)
    seven_am = datetime(2025, 1, 10, 7, 0, tzinfo=timezone.utc)
    reminder = env.scheduler.schedule_reminder("evt", eleven_pm)

    _advance_to(env, eleven_pm)

    deferred = env.scheduler.get(reminder.id)
    assert deferred.status == ReminderStatus.PENDING
    assert deferred.scheduled_for == seven_am
    assert env.sink.delivered == []

    _advance_to(env, seven_am)
    assert env.scheduler.get(reminder.id).status == ReminderStatus.SENT
    assert len(env.sink.delivered) == 1


def test_quiet_hours_disabled_delivers_at_night(env):
    env.settings.update({"quiet_hours": {"enabled": False}})
    eleven_pm = datetime(2025, 1, 9, 23, 0, tzinfo=timezone.utc)
    reminder = env.scheduler.schedule_reminder("evt", eleven_pm)

    _advance_to(env, eleven_pm)

    assert env.scheduler.get(reminder.id).status == ReminderStatus.SENT


# ---------------------------------------------------------------------------
# Permissions and channel toggles
# ---------------------------------------------------------------------------


def test_no_permission_records_without_timer(env):
    env.sink.permissions[DeliveryKind.PUSH] = False
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))

    assert reminder is not None
    assert env.scheduler.list_all() != []
    assert not env.scheduler.is_armed(reminder.id)
    assert env.timers.pending() == 0


def test_notifications_disabled_records_without_timer(env):
    env.settings.update({"enabled": False})
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    assert not env.scheduler.is_armed(reminder.id)


def test_push_off_falls_back_to_in_app(env):
    env.settings.update({"channels": {"push": False}})
    reminders = env.scheduler.schedule_for_event(_make_event())
    assert {r.kind for r in reminders} == {DeliveryKind.IN_APP}


def test_push_permission_denied_falls_back_to_in_app(env):
    env.sink.permissions[DeliveryKind.PUSH] = False
    reminders = env.scheduler.schedule_for_event(_make_event())

    assert {r.kind for r in reminders} == {DeliveryKind.IN_APP}
    assert all(env.scheduler.is_armed(r.id) for r in reminders)


def test_rearm_all_after_permission_granted(env):
    env.sink.permissions[DeliveryKind.PUSH] = False
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    env.sink.permissions[DeliveryKind.PUSH] = True

    env.scheduler.rearm_all()

    assert env.scheduler.is_armed(reminder.id)
    assert env.timers.pending() == 1


# ---------------------------------------------------------------------------
# Acknowledge and cancel
# ---------------------------------------------------------------------------


def test_acknowledge_sent_reminder_posts_in_app_notification(env):
    event = _make_event()
    reminder = env.scheduler.schedule_for_event(event)[0]
    _advance_to(env, reminder.scheduled_for)

    acknowledged = env.scheduler.acknowledge(reminder.id)

    assert acknowledged.status == ReminderStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_at == reminder.scheduled_for
    notifications = env.notifications.list_all()
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.REMINDER
    assert notifications[0].related_event_id == event.id
    assert [a.id for a in notifications[0].actions] == ["view", "dismiss"]


def test_acknowledge_pending_reminder_is_rejected(env):
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))
    with pytest.raises(InvalidTransitionError):
        env.scheduler.acknowledge(reminder.id)


def test_cancel_is_idempotent(env):
    reminder = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=1))

    env.scheduler.cancel(reminder.id)
    env.scheduler.cancel(reminder.id)
    env.scheduler.cancel("never-existed")

    assert env.scheduler.list_all() == []
    _advance_to(env, _NOW + timedelta(hours=2))
    assert env.sink.delivered == []


def test_cancel_for_event(env):
    event = _make_event()
    env.scheduler.schedule_for_event(event)
    env.scheduler.schedule_reminder("other", _NOW + timedelta(hours=1))

    assert env.scheduler.cancel_for_event(event.id) == 2
    assert [r.event_id for r in env.scheduler.list_all()] == ["other"]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def test_reminders_survive_restart(env):
    pending = env.scheduler.schedule_reminder("evt", _NOW + timedelta(hours=2))
    sent = env.scheduler.schedule_reminder("evt", _NOW + timedelta(minutes=30))
    _advance_to(env, _NOW + timedelta(hours=1))
    assert len(env.state.load(REMINDERS_KEY)) == 2

    timers = ManualTimers(env.clock)
    restored = ReminderScheduler(
        env.settings, env.sink, env.notifications, timers, env.clock, env.state
    )
    assert restored.restore() == 2
    assert restored.get(sent.id).status == ReminderStatus.SENT
    assert restored.is_armed(pending.id)
    assert not restored.is_armed(sent.id)

    env.clock.set(_NOW + timedelta(hours=2))
    timers.run_due()
    assert restored.get(pending.id).status == ReminderStatus.SENT
