"""Process configuration, read from ``FAMILYHUB_*`` environment variables."""

from __future__ import annotations

from datetime import tzinfo
from pathlib import Path

from dateutil import tz
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Example:
        FAMILYHUB_STATE_FILE=/var/lib/familyhub/state.json
        FAMILYHUB_TIMEZONE=Europe/London
        FAMILYHUB_EMAIL_RECIPIENTS='["parent@example.com"]'
    """

    state_file: Path | None = Field(
        default=None, description="JSON state document; in-memory state when unset."
    )
    timezone: str = Field(
        default="UTC", description="IANA zone that event dates and quiet hours are read in."
    )
    log_level: str = Field(default="INFO")
    tick_interval_seconds: float = Field(
        default=30.0, gt=0, description="How often the background ticker fires due timers."
    )
    email_endpoint: str | None = Field(
        default=None, description="URL the email envelope is POSTed to; email is off when unset."
    )
    email_recipients: list[str] = Field(default_factory=list)
    push_permission: bool = Field(
        default=True, description="Whether the OS granted notification permission."
    )
    conflict_retention_hours: float = Field(default=24.0, gt=0)
    notification_capacity: int = Field(default=100, gt=0)

    model_config = {
        "env_prefix": "FAMILYHUB_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        if tz.gettz(value) is None:
            raise ValueError(f"unknown time zone {value!r}")
        return value

    def zone(self) -> tzinfo:
        return tz.gettz(self.timezone)
