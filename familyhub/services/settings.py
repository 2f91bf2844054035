"""Process-wide notification settings: typed merge, validation, persistence."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from familyhub.domain.errors import SettingsError
from familyhub.domain.models import EventType, NotificationSettings
from familyhub.repos.state import SETTINGS_KEY, StateStore

logger = logging.getLogger(__name__)

# Event types that map onto a reminder category; anything else uses "other".
_REMINDER_CATEGORY = {
    EventType.EDUCATION: "school",
    EventType.APPOINTMENT: "medical",
    EventType.SPORT: "activities",
    EventType.FITNESS: "activities",
    EventType.SOCIAL: "social",
    EventType.FAMILY: "social",
}


def reminder_category(event_type: EventType) -> str:
    return _REMINDER_CATEGORY.get(event_type, "other")


def merge_settings(
    current: NotificationSettings, updates: Mapping[str, Any]
) -> NotificationSettings:
    """Return a new settings object with *updates* applied field by field.

    Nested sections (``channels``, ``default_reminders``, ``quiet_hours``)
    merge key by key, so ``{"quiet_hours": {"start": "23:00"}}`` keeps the
    other quiet-hours fields. Unknown keys and invalid values raise
    ``SettingsError``; *current* is never modified.
    """
    data = current.model_dump()
    for key, value in updates.items():
        if key not in NotificationSettings.model_fields:
            raise SettingsError(f"Unknown setting: {key!r}")
        if isinstance(value, BaseModel):
            value = value.model_dump()
        section = data[key]
        if isinstance(section, dict):
            if not isinstance(value, Mapping):
                raise SettingsError(f"Setting {key!r} expects an object")
            unknown = sorted(set(value) - set(section))
            if unknown:
                raise SettingsError(f"Unknown {key} setting(s): {', '.join(unknown)}")
            data[key] = {**section, **value}
        else:
            data[key] = value

    try:
        return NotificationSettings.model_validate(data)
    except ValidationError as exc:
        raise SettingsError(str(exc)) from exc


class SettingsService:
    """Owns the single NotificationSettings instance.

    Readers get copies; the only way to change settings is ``update``,
    which persists on every call.
    """

    def __init__(self, state_store: StateStore) -> None:
        self._state_store = state_store
        self._settings = NotificationSettings()

    def load(self) -> NotificationSettings:
        stored = self._state_store.load(SETTINGS_KEY)
        if stored:
            try:
                self._settings = merge_settings(NotificationSettings(), stored)
            except SettingsError as exc:
                logger.warning("Ignoring persisted settings: %s", exc)
        return self.get()

    def get(self) -> NotificationSettings:
        return self._settings.model_copy(deep=True)

    @property
    def current(self) -> NotificationSettings:
        """Read-only view for services that consult settings on every call."""
        return self._settings

    def update(self, updates: Mapping[str, Any]) -> NotificationSettings:
        self._settings = merge_settings(self._settings, updates)
        self._state_store.save(SETTINGS_KEY, self._settings.model_dump(mode="json"))
        logger.info("Notification settings updated: %s", ", ".join(sorted(updates)))
        return self.get()

    def offsets_for(self, event_type: EventType) -> list[int]:
        category = reminder_category(event_type)
        return list(getattr(self._settings.default_reminders, category))
