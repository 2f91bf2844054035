"""Delivery boundary: push (OS notification), email, and the in-app feed.

``DeliverySink.deliver(kind, payload)`` never raises for an ordinary
delivery failure; it returns a failed ``DeliveryResult`` carrying the error
message, which the reminder scheduler records on the reminder.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from familyhub.domain.errors import DeliveryError
from familyhub.domain.models import (
    DeliveryKind,
    InAppNotification,
    NotificationType,
)
from familyhub.services.notifications import NotificationStore

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> DeliveryResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> DeliveryResult:
        return cls(success=False, error=error)


class DeliverySink(ABC):
    @abstractmethod
    def deliver(self, kind: DeliveryKind, payload: Mapping[str, Any]) -> DeliveryResult:
        """Hand *payload* to the channel for *kind*."""

    def has_permission(self, kind: DeliveryKind) -> bool:
        return True


class Channel(ABC):
    """One delivery channel. ``send`` raises ``DeliveryError`` on failure."""

    permission_granted: bool = True

    @abstractmethod
    def send(self, payload: Mapping[str, Any]) -> None:
        pass


class ChannelRouter(DeliverySink):
    """Routes each delivery kind to its channel."""

    def __init__(self, channels: Mapping[DeliveryKind, Channel]) -> None:
        self.channels = dict(channels)

    def has_permission(self, kind: DeliveryKind) -> bool:
        channel = self.channels.get(kind)
        return channel is not None and channel.permission_granted

    def deliver(self, kind: DeliveryKind, payload: Mapping[str, Any]) -> DeliveryResult:
        channel = self.channels.get(kind)
        if channel is None:
            return DeliveryResult.failed(f"No channel configured for {kind}")
        if not channel.permission_granted:
            return DeliveryResult.failed(f"Permission not granted for {kind} notifications")
        try:
            channel.send(payload)
        except DeliveryError as exc:
            logger.warning("%s delivery failed: %s", kind, exc)
            return DeliveryResult.failed(str(exc))
        return DeliveryResult.ok()


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class ConsolePushChannel(Channel):
    """Stand-in for OS notifications: writes the notification to the log."""

    def __init__(self, permission_granted: bool = True) -> None:
        self.permission_granted = permission_granted
        self.sent: list[dict] = []

    def send(self, payload: Mapping[str, Any]) -> None:
        title = payload.get("title")
        if not title:
            raise DeliveryError("Push notification needs a title")
        logger.info("PUSH: %s - %s", title, payload.get("body", ""))
        self.sent.append(dict(payload))


class InAppChannel(Channel):
    """Writes deliveries into the in-app notification feed."""

    def __init__(self, store: NotificationStore) -> None:
        self.store = store

    def send(self, payload: Mapping[str, Any]) -> None:
        data = {
            "type": NotificationType.REMINDER,
            "message": payload.get("body", ""),
            **{k: v for k, v in payload.items() if k in InAppNotification.model_fields},
        }
        try:
            notification = InAppNotification.model_validate(data)
        except ValidationError as exc:
            raise DeliveryError(f"Invalid in-app notification: {exc}") from exc
        self.store.add(notification)


class EmailChannel(Channel):
    """Posts a ``{type, ...data, recipients}`` envelope to an email endpoint.

    The endpoint renders and sends the template; this channel only
    transports the envelope.
    """

    def __init__(
        self,
        endpoint: str | None,
        recipients: Sequence[str] = (),
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self.recipients = list(recipients)
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def permission_granted(self) -> bool:
        return bool(self.endpoint)

    def set_recipients(self, recipients: Sequence[str]) -> None:
        self.recipients = list(recipients)

    def send(self, payload: Mapping[str, Any]) -> None:
        if not self.endpoint:
            raise DeliveryError("No email endpoint configured")
        if not self.recipients:
            raise DeliveryError("No email recipients configured")
        envelope = {**payload, "recipients": self.recipients}
        try:
            response = self._client.post(self.endpoint, json=envelope)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Email request failed: {exc}") from exc
        logger.info("Email %r sent to %d recipient(s)", payload.get("type"), len(self.recipients))
