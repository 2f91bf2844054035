"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Callable, Protocol

from familyhub.domain.models import (
    ALL_PEOPLE,
    Conflict,
    Event,
    Person,
    Rule,
    RuleCategory,
    Severity,
)
from familyhub.services.resolutions import ResolutionAdvisor
from familyhub.services.rules import RuleCatalog
from familyhub.services.timers import Clock, SystemClock

logger = logging.getLogger(__name__)

SEVERITY_SCORE = {Severity.MINOR: 3, Severity.MAJOR: 6, Severity.CRITICAL: 9}
TYPE_SCORE = {
    RuleCategory.DOUBLE_BOOKING: 3,
    RuleCategory.TIME_OVERLAP: 2,
    RuleCategory.FAMILY_CONFLICT: 2,
    RuleCategory.LOCATION_CONFLICT: 1,
    RuleCategory.TRAVEL_TIME: 1,
}
# Only a double booking may reach the top score.
MAX_PRIORITY = 10
MAX_SHARED_PRIORITY = 9

LOCATION_WINDOW_MINUTES = 60


def events_overlap(
    start1: datetime, end1: datetime, start2: datetime, end2: datetime
) -> bool:
    """Half-open interval test: touching boundaries do not overlap."""
    return start1 < end2 and start2 < end1


def overlap_minutes(
    start1: datetime, end1: datetime, start2: datetime, end2: datetime
) -> float:
    overlap = min(end1, end2) - max(start1, start2)
    return max(0.0, overlap.total_seconds() / 60)


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing_events: Sequence[Event],
) -> list[Event]:
    """Return existing events that overlap with the given time range.

    Overlap rule: conflict if new_start < existing.end AND existing.start < new_end.
    Exact boundary touches (end == start) are NOT considered conflicts.
    """
    return [
        event
        for event in existing_events
        if events_overlap(new_start, new_end, event.start, event.end)
    ]


def overlap_severity(minutes: float, duration: int) -> Severity:
    ratio = minutes / duration
    if ratio >= 0.9:
        return Severity.CRITICAL
    if ratio >= 0.5:
        return Severity.MAJOR
    return Severity.MINOR


def priority_for(severity: Severity, category: RuleCategory) -> int:
    score = min(MAX_PRIORITY, SEVERITY_SCORE[severity] + TYPE_SCORE[category])
    if category is not RuleCategory.DOUBLE_BOOKING:
        score = min(score, MAX_SHARED_PRIORITY)
    return score


def affected_people(events: Sequence[Event]) -> list[str]:
    """Union of the events' people; a family-wide event absorbs everyone."""
    people: list[str] = []
    for event in events:
        if event.is_family:
            return [ALL_PEOPLE]
        if event.person not in people:
            people.append(event.person)
    return people


# ---------------------------------------------------------------------------
# Travel time
# ---------------------------------------------------------------------------


class TravelTimeEstimator(Protocol):
    def estimate(self, origin: str, destination: str) -> int: ...


class KeywordTravelEstimator:
    """Guesses travel minutes from place-name keywords.

    Both places naming the same kind of place (``home``, ``school`` ...) are
    assumed close; both inside one of the broad ``areas`` are a cross-town
    trip; anything else gets the default.
    """

    def __init__(
        self,
        keywords: Sequence[str] = ("home", "work", "school", "gym", "shop"),
        areas: Sequence[str] = ("london",),
        same_kind_minutes: int = 10,
        same_area_minutes: int = 30,
        default_minutes: int = 20,
    ) -> None:
        self.keywords = tuple(keywords)
        self.areas = tuple(areas)
        self.same_kind_minutes = same_kind_minutes
        self.same_area_minutes = same_area_minutes
        self.default_minutes = default_minutes

    def _kind(self, location: str) -> str | None:
        lowered = location.lower()
        return next((k for k in self.keywords if k in lowered), None)

    def estimate(self, origin: str, destination: str) -> int:
        origin_kind = self._kind(origin)
        if origin_kind is not None and origin_kind == self._kind(destination):
            return self.same_kind_minutes
        a, b = origin.lower(), destination.lower()
        if any(area in a and area in b for area in self.areas):
            return self.same_area_minutes
        return self.default_minutes


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class ConflictDetector:
    """Applies every enabled rule of a RuleCatalog to a candidate event.

    ``detect`` has no side effects; the returned conflicts are ordered by
    priority, highest first, keeping rule order among equal priorities.
    """

    def __init__(
        self,
        catalog: RuleCatalog,
        advisor: ResolutionAdvisor | None = None,
        estimator: TravelTimeEstimator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.catalog = catalog
        self.advisor = advisor or ResolutionAdvisor()
        self.estimator = estimator or KeywordTravelEstimator()
        self.clock = clock or SystemClock()
        self._handlers: dict[RuleCategory, Callable[[Rule, Event, list[Event]], list[Conflict]]] = {
            RuleCategory.TIME_OVERLAP: self._time_overlaps,
            RuleCategory.DOUBLE_BOOKING: self._double_bookings,
            RuleCategory.LOCATION_CONFLICT: self._location_conflicts,
            RuleCategory.TRAVEL_TIME: self._travel_time_conflicts,
            RuleCategory.FAMILY_CONFLICT: self._family_conflicts,
        }
        missing = set(RuleCategory) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No detection handler for: {sorted(missing)}")

    def detect(
        self,
        new_event: Event,
        candidate_events: Sequence[Event],
        people: Sequence[Person] = (),
    ) -> list[Conflict]:
        relevant = [
            event
            for event in candidate_events
            if event.id != new_event.id and event.shares_scope_with(new_event)
        ]
        if people:
            self._warn_unknown_people(new_event, relevant, people)

        conflicts: list[Conflict] = []
        for rule in self.catalog.enabled():
            conflicts.extend(self._handlers[rule.category](rule, new_event, relevant))

        conflicts.sort(key=lambda c: c.priority, reverse=True)
        if conflicts:
            logger.info(
                "Event %s: %d conflict(s) detected (%s)",
                new_event.id,
                len(conflicts),
                ", ".join(c.category for c in conflicts),
            )
        return conflicts

    def _warn_unknown_people(
        self, new_event: Event, events: list[Event], people: Sequence[Person]
    ) -> None:
        known = {person.id for person in people} | {ALL_PEOPLE}
        for event in [new_event, *events]:
            if event.person not in known:
                logger.warning("Event %s references unknown person %r", event.id, event.person)

    def _conflict(
        self,
        conflict_id: str,
        category: RuleCategory,
        severity: Severity,
        priority: int,
        new_event: Event,
        conflicting: list[Event],
        **context,
    ) -> Conflict:
        return Conflict(
            id=conflict_id,
            new_event=new_event,
            conflicting_events=conflicting,
            category=category,
            severity=severity,
            detected_at=self.clock.now(),
            resolutions=self.advisor.advise(category, new_event, conflicting, **context),
            affected_people=affected_people([new_event, *conflicting]),
            priority=priority,
        )

    # ------------------------------------------------------------------
    # Rule handlers
    # ------------------------------------------------------------------

    def _time_overlaps(self, rule: Rule, new_event: Event, events: list[Event]) -> list[Conflict]:
        conflicts = []
        for existing in events:
            if not events_overlap(new_event.start, new_event.end, existing.start, existing.end):
                continue
            minutes = overlap_minutes(new_event.start, new_event.end, existing.start, existing.end)
            severity = overlap_severity(minutes, new_event.duration)
            conflicts.append(
                self._conflict(
                    f"time-overlap-{new_event.id}-{existing.id}",
                    RuleCategory.TIME_OVERLAP,
                    severity,
                    priority_for(severity, RuleCategory.TIME_OVERLAP),
                    new_event,
                    [existing],
                    overlap_minutes=minutes,
                )
            )
        return conflicts

    def _double_bookings(self, rule: Rule, new_event: Event, events: list[Event]) -> list[Conflict]:
        return [
            self._conflict(
                f"double-booking-{new_event.id}-{existing.id}",
                RuleCategory.DOUBLE_BOOKING,
                Severity.CRITICAL,
                priority_for(Severity.CRITICAL, RuleCategory.DOUBLE_BOOKING),
                new_event,
                [existing],
            )
            for existing in events
            if existing.date == new_event.date and existing.time == new_event.time
        ]

    def _location_conflicts(
        self,
        rule: Rule,
        new_event: Event,
        events: list[Event],
        category: RuleCategory = RuleCategory.LOCATION_CONFLICT,
    ) -> list[Conflict]:
        if not new_event.location:
            return []
        prefix = category.value.replace("_", "-")
        conflicts = []
        for existing in events:
            if not existing.location or existing.location == new_event.location:
                continue
            gap = abs((new_event.start - existing.start).total_seconds()) / 60
            if gap > LOCATION_WINDOW_MINUTES:
                continue
            travel = self.estimator.estimate(existing.location, new_event.location)
            if gap >= travel:
                continue
            severity = Severity.MAJOR if gap < travel / 2 else Severity.MINOR
            conflicts.append(
                self._conflict(
                    f"{prefix}-{new_event.id}-{existing.id}",
                    category,
                    severity,
                    priority_for(Severity.MAJOR, category),
                    new_event,
                    [existing],
                    travel_minutes=travel,
                )
            )
        return conflicts

    def _travel_time_conflicts(
        self, rule: Rule, new_event: Event, events: list[Event]
    ) -> list[Conflict]:
        return self._location_conflicts(rule, new_event, events, RuleCategory.TRAVEL_TIME)

    def _family_conflicts(self, rule: Rule, new_event: Event, events: list[Event]) -> list[Conflict]:
        if not new_event.is_family:
            return []
        individual = [
            event
            for event in events
            if not event.is_family
            and events_overlap(new_event.start, new_event.end, event.start, event.end)
        ]
        if not individual:
            return []
        return [
            self._conflict(
                f"family-conflict-{new_event.id}",
                RuleCategory.FAMILY_CONFLICT,
                Severity.MAJOR,
                priority_for(Severity.MAJOR, RuleCategory.FAMILY_CONFLICT),
                new_event,
                individual,
            )
        ]
