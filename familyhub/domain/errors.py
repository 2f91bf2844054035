"""Exceptions raised by the conflict and reminder services."""

from __future__ import annotations


class FamilyHubError(Exception):
    """Base class for every error raised by the engine."""


class RuleNotFoundError(FamilyHubError, LookupError):
    pass


class ReminderNotFoundError(FamilyHubError, LookupError):
    pass


class NotificationNotFoundError(FamilyHubError, LookupError):
    pass


class ConflictNotFoundError(FamilyHubError, LookupError):
    pass


class SettingsError(FamilyHubError, ValueError):
    """Raised when a settings update names an unknown key or an invalid value."""


class InvalidTransitionError(FamilyHubError, ValueError):
    """Raised when a reminder is asked to move to a state it cannot reach."""


class DeliveryError(FamilyHubError):
    """Raised by a delivery channel that could not hand off its payload."""
