"""Ranked resolution options for each kind of detected conflict.

Output is deterministic and never applied automatically: ``automated=True``
only means a client may offer the option as a one-click action.
"""

from __future__ import annotations

from familyhub.domain.models import (
    Event,
    Impact,
    Resolution,
    ResolutionType,
    RuleCategory,
)

SMALL_OVERLAP_MINUTES = 30


def time_overlap_resolutions(
    new_event: Event, existing: Event, overlap_minutes: float
) -> list[Resolution]:
    resolutions = [
        Resolution(
            id="reschedule-new",
            type=ResolutionType.RESCHEDULE,
            description=f'Reschedule "{new_event.title}" to avoid overlap',
            impact=Impact.MEDIUM,
        ),
        Resolution(
            id="reschedule-existing",
            type=ResolutionType.RESCHEDULE,
            description=f'Reschedule "{existing.title}" to accommodate new event',
            impact=Impact.HIGH,
        ),
    ]
    if overlap_minutes < SMALL_OVERLAP_MINUTES:
        resolutions.append(
            Resolution(
                id="modify-duration",
                type=ResolutionType.MODIFY_DURATION,
                description="Reduce duration of one or both events to eliminate overlap",
                automated=True,
                impact=Impact.LOW,
            )
        )
    return resolutions


def double_booking_resolutions(new_event: Event, existing: Event) -> list[Resolution]:
    return [
        Resolution(
            id="cancel-new",
            type=ResolutionType.CANCEL,
            description=f'Cancel "{new_event.title}" (keep existing event)',
            impact=Impact.LOW,
        ),
        Resolution(
            id="cancel-existing",
            type=ResolutionType.CANCEL,
            description=f'Cancel "{existing.title}" (keep new event)',
            impact=Impact.HIGH,
        ),
        Resolution(
            id="reschedule-new",
            type=ResolutionType.RESCHEDULE,
            description=f'Reschedule "{new_event.title}" to next available slot',
            automated=True,
            impact=Impact.MEDIUM,
        ),
    ]


def location_resolutions(new_event: Event, travel_minutes: int) -> list[Resolution]:
    return [
        Resolution(
            id="reschedule-buffer",
            type=ResolutionType.RESCHEDULE,
            description=f"Add {travel_minutes} minute buffer between events",
            automated=True,
            impact=Impact.LOW,
        ),
        Resolution(
            id="relocate-new",
            type=ResolutionType.RELOCATE,
            description=f'Change location of "{new_event.title}" to match existing event',
            impact=Impact.MEDIUM,
        ),
        Resolution(
            id="virtual-option",
            type=ResolutionType.MODIFY_DURATION,
            description="Make one event virtual to eliminate travel time",
            impact=Impact.LOW,
        ),
    ]


def family_resolutions() -> list[Resolution]:
    return [
        Resolution(
            id="reschedule-individual",
            type=ResolutionType.RESCHEDULE,
            description="Reschedule individual events to accommodate family event",
            impact=Impact.HIGH,
        ),
        Resolution(
            id="reschedule-family",
            type=ResolutionType.RESCHEDULE,
            description="Reschedule family event to avoid individual conflicts",
            impact=Impact.MEDIUM,
        ),
        Resolution(
            id="split-family",
            type=ResolutionType.SPLIT_EVENT,
            description="Split family event to work around individual schedules",
            impact=Impact.HIGH,
        ),
    ]


class ResolutionAdvisor:
    """Dispatches to the resolution builder for a conflict category."""

    def advise(
        self,
        category: RuleCategory,
        new_event: Event,
        conflicting: list[Event],
        *,
        overlap_minutes: float = 0,
        travel_minutes: int = 0,
    ) -> list[Resolution]:
        if category is RuleCategory.TIME_OVERLAP:
            return time_overlap_resolutions(new_event, conflicting[0], overlap_minutes)
        if category is RuleCategory.DOUBLE_BOOKING:
            return double_booking_resolutions(new_event, conflicting[0])
        if category in (RuleCategory.LOCATION_CONFLICT, RuleCategory.TRAVEL_TIME):
            return location_resolutions(new_event, travel_minutes)
        if category is RuleCategory.FAMILY_CONFLICT:
            return family_resolutions()
        raise ValueError(f"No resolutions for category {category!r}")
