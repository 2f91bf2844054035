"""Catalog of conflict-detection rules that the operator can toggle at runtime."""

from __future__ import annotations

import logging

from familyhub.domain.errors import RuleNotFoundError
from familyhub.domain.models import Rule, RuleCategory, RuleUpdateRequest, Severity

logger = logging.getLogger(__name__)


def default_rules() -> list[Rule]:
    return [
        Rule(
            id="time-overlap",
            name="Time Overlap Detection",
            category=RuleCategory.TIME_OVERLAP,
            severity=Severity.MAJOR,
            description="Detects when events overlap in time for the same person",
        ),
        Rule(
            id="double-booking",
            name="Double Booking Prevention",
            category=RuleCategory.DOUBLE_BOOKING,
            severity=Severity.CRITICAL,
            description="Flags events scheduled at exactly the same time",
        ),
        Rule(
            id="location-conflict",
            name="Location Conflict Detection",
            category=RuleCategory.LOCATION_CONFLICT,
            severity=Severity.MAJOR,
            description="Detects events at different locations too close together",
        ),
        Rule(
            id="travel-time",
            name="Travel Time Consideration",
            category=RuleCategory.TRAVEL_TIME,
            severity=Severity.MINOR,
            description="Considers travel time between different locations",
        ),
        Rule(
            id="family-conflict",
            name="Family Event Conflicts",
            category=RuleCategory.FAMILY_CONFLICT,
            severity=Severity.MAJOR,
            description="Detects family-wide events that clash with individual plans",
        ),
    ]


class RuleCatalog:
    """Ordered rule set; detection runs the enabled rules in this order."""

    def __init__(self, rules: list[Rule] | None = None) -> None:
        self._rules: list[Rule] = rules if rules is not None else default_rules()

    def list_all(self) -> list[Rule]:
        return [rule.model_copy() for rule in self._rules]

    def enabled(self) -> list[Rule]:
        return [rule.model_copy() for rule in self._rules if rule.enabled]

    def get(self, rule_id: str) -> Rule:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule.model_copy()
        raise RuleNotFoundError(rule_id)

    def update(self, rule_id: str, update: RuleUpdateRequest) -> Rule:
        changes = update.model_dump(exclude_none=True)
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                self._rules[index] = rule.model_copy(update=changes)
                logger.info("Rule %s updated: %s", rule_id, changes)
                return self._rules[index].model_copy()
        raise RuleNotFoundError(rule_id)

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        return self.update(rule_id, RuleUpdateRequest(enabled=enabled))
