"""Domain models for the scheduling-conflict and reminder engine."""

from __future__ import annotations

import datetime as dt
import re
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

try:
    from enum import StrEnum
except ImportError:  # pragma: no cover - fallback for older Python runtimes

    class StrEnum(str, Enum):
        pass


ALL_PEOPLE = "all"

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class EventType(StrEnum):
    SPORT = "sport"
    MEETING = "meeting"
    FITNESS = "fitness"
    SOCIAL = "social"
    EDUCATION = "education"
    FAMILY = "family"
    OTHER = "other"
    APPOINTMENT = "appointment"
    WORK = "work"
    PERSONAL = "personal"


class Recurrence(StrEnum):
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RuleCategory(StrEnum):
    TIME_OVERLAP = "time_overlap"
    DOUBLE_BOOKING = "double_booking"
    LOCATION_CONFLICT = "location_conflict"
    TRAVEL_TIME = "travel_time"
    FAMILY_CONFLICT = "family_conflict"


class Severity(StrEnum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class ResolutionType(StrEnum):
    RESCHEDULE = "reschedule"
    RELOCATE = "relocate"
    CANCEL = "cancel"
    MODIFY_DURATION = "modify_duration"
    SPLIT_EVENT = "split_event"


class Impact(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeliveryKind(StrEnum):
    PUSH = "push"
    EMAIL = "email"
    IN_APP = "inapp"


class ReminderStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class NotificationType(StrEnum):
    REMINDER = "reminder"
    CONFLICT = "conflict"
    SYNC = "sync"
    SYSTEM = "system"


class NotificationPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationCategory(StrEnum):
    EVENT = "event"
    CONFLICT = "conflict"
    SYNC = "sync"
    SYSTEM = "system"
    ERROR = "error"


class ActionStyle(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"


class EmailFrequency(StrEnum):
    IMMEDIATE = "immediate"
    DAILY_DIGEST = "daily_digest"
    WEEKLY_DIGEST = "weekly_digest"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Calendar inputs
# ---------------------------------------------------------------------------


class Person(BaseModel):
    id: str
    name: str
    color: str | None = None


class Event(BaseModel):
    """A calendar entry. Frozen: an edit is a new Event with the same id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    title: str
    person: str = ALL_PEOPLE
    date: dt.date
    time: dt.time
    duration: int = Field(gt=0)
    location: str | None = None
    cost: float | None = None
    notes: str | None = None
    type: EventType = EventType.OTHER
    recurring: Recurrence = Recurrence.NONE

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, self.time)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration)

    @property
    def is_family(self) -> bool:
        return self.person == ALL_PEOPLE

    def shares_scope_with(self, other: Event) -> bool:
        return self.person == other.person or self.is_family or other.is_family


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class Rule(BaseModel):
    id: str
    name: str
    category: RuleCategory
    severity: Severity
    enabled: bool = True
    description: str = ""


class Resolution(BaseModel):
    id: str
    type: ResolutionType
    description: str
    automated: bool = False
    impact: Impact


class Conflict(BaseModel):
    id: str
    new_event: Event
    conflicting_events: list[Event]
    category: RuleCategory
    severity: Severity
    detected_at: datetime = Field(default_factory=_utcnow)
    resolved: bool = False
    resolved_at: datetime | None = None
    resolutions: list[Resolution] = Field(default_factory=list)
    affected_people: list[str] = Field(default_factory=list)
    priority: int = Field(ge=1, le=10)


# ---------------------------------------------------------------------------
# Reminders and notifications
# ---------------------------------------------------------------------------


class ReminderMetadata(BaseModel):
    title: str
    body: str
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: dict = Field(default_factory=dict)


class Reminder(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    person_id: str | None = None
    kind: DeliveryKind = DeliveryKind.PUSH
    scheduled_for: datetime
    sent_at: datetime | None = None
    acknowledged_at: datetime | None = None
    status: ReminderStatus = ReminderStatus.PENDING
    retry_count: int = 0
    error_message: str | None = None
    metadata: ReminderMetadata | None = None


class NotificationAction(BaseModel):
    id: str
    label: str
    style: ActionStyle = ActionStyle.SECONDARY
    action: str
    data: dict | None = None


class InAppNotification(BaseModel):
    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    type: NotificationType
    title: str
    message: str
    icon: str | None = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    category: NotificationCategory = NotificationCategory.EVENT
    read: bool = False
    action_required: bool = False
    actions: list[NotificationAction] = Field(default_factory=list)
    related_event_id: str | None = None
    related_person_id: str | None = None
    expires_at: datetime | None = None
    metadata: dict | None = None


class SnoozedNotification(BaseModel):
    """A notification hidden from the feed until ``until``."""

    notification: InAppNotification
    until: datetime


class NotificationFilters(BaseModel):
    type: list[NotificationType] | None = None
    category: list[NotificationCategory] | None = None
    priority: list[NotificationPriority] | None = None
    read: bool | None = None
    start: datetime | None = None
    end: datetime | None = None
    person_id: str | None = None
    event_id: str | None = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class ChannelSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    push: bool = True
    email: bool = False
    in_app: bool = True


class DefaultReminders(BaseModel):
    model_config = ConfigDict(extra="forbid")

    school: list[int] = Field(default_factory=lambda: [1440, 60])
    medical: list[int] = Field(default_factory=lambda: [10080, 1440, 60])
    activities: list[int] = Field(default_factory=lambda: [60, 15])
    social: list[int] = Field(default_factory=lambda: [1440, 60])
    other: list[int] = Field(default_factory=lambda: [60])

    @field_validator("school", "medical", "activities", "social", "other")
    @classmethod
    def _positive_offsets(cls, offsets: list[int]) -> list[int]:
        if any(offset <= 0 for offset in offsets):
            raise ValueError("reminder offsets must be positive minutes")
        return offsets


class QuietHours(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    start: str = "22:00"
    end: str = "07:00"

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value


class NotificationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    channels: ChannelSettings = Field(default_factory=ChannelSettings)
    default_reminders: DefaultReminders = Field(default_factory=DefaultReminders)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    email_frequency: EmailFrequency = EmailFrequency.DAILY_DIGEST


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventWithConflicts(BaseModel):
    event: Event
    conflicts: list[Conflict] = Field(default_factory=list)


class RuleUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    severity: Severity | None = None


class RescheduleRequest(BaseModel):
    scheduled_for: datetime


class SnoozeRequest(BaseModel):
    until: str
