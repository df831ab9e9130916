"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, SecretStr

DEFAULT_AUTO_REPLY_SUBJECT = "We received your email"
DEFAULT_AUTO_REPLY_BODY = (
    "Thank you for your message. We will get back to you within 24 hours "
    "(excluding weekends and public holidays)."
)
DEFAULT_VACATION_SUBJECT = "I am currently out of the office"
DEFAULT_VACATION_BODY = (
    "I am currently out of the office until {returnDate}. "
    "For anything urgent, please contact {backupEmail}."
)


class ConnectionSettings(BaseModel):
    """Settings for one IMAP or SMTP endpoint."""

    host: str = Field(description="Server hostname")
    port: int = Field(description="Server port, e.g. 993 for IMAPS")
    secure: bool = Field(default=True, description="Use implicit TLS")
    user: str = Field(description="Login name")
    password: SecretStr = Field(description="Login password")


class AutoReplySettings(BaseModel):
    """Standard auto-reply preferences."""

    enabled: bool = Field(default=False, description="Send standard auto-replies")
    subject: str = Field(default=DEFAULT_AUTO_REPLY_SUBJECT)
    body: str = Field(default=DEFAULT_AUTO_REPLY_BODY)


class VacationSettings(BaseModel):
    """Vacation responder preferences."""

    enabled: bool = Field(default=False, description="Vacation mode toggle")
    subject: str = Field(default=DEFAULT_VACATION_SUBJECT)
    message: str = Field(default=DEFAULT_VACATION_BODY)
    start_date: date | None = Field(default=None, description="First day away")
    end_date: date | None = Field(default=None, description="Last day away")
    backup_email: str | None = Field(
        default=None, description="Address to contact while away"
    )


class TenantSettings(BaseModel):
    """Per-tenant messaging configuration with decrypted credentials."""

    from_email: str | None = Field(default=None, description="Sending address")
    sender_name: str | None = Field(default=None, description="Display name")
    sender_logo_url: str | None = Field(
        default=None, description="Logo shown in the message header"
    )
    imap: ConnectionSettings | None = Field(
        default=None, description="Mail retrieval endpoint"
    )
    smtp: ConnectionSettings | None = Field(
        default=None, description="Mail submission endpoint"
    )
    spam_filter_enabled: bool = Field(default=True)
    tracking_enabled: bool = Field(default=True)
    auto_reply: AutoReplySettings = Field(default_factory=AutoReplySettings)
    vacation: VacationSettings = Field(default_factory=VacationSettings)

    @property
    def sending_address(self) -> str | None:
        """Return the address outbound mail is sent from."""
        if self.from_email:
            return self.from_email
        if self.smtp is not None:
            return self.smtp.user
        return None


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_relay.db"), description="SQLite database path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class TrackingSettings(BaseModel):
    """Settings for open and click tracking."""

    base_url: str = Field(
        default="http://localhost:8000",
        description="Public URL tracking pixels and links point at",
    )


class MessagingSettings(BaseModel):
    """Settings controlling mailbox access."""

    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)
    timeout_seconds: int = Field(
        default=30, ge=1, description="Socket timeout for IMAP and SMTP"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    tenants: dict[str, TenantSettings] = Field(default_factory=dict)


ENV_PREFIX = "INBOX_RELAY_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


class SettingsCredentialStore:
    """Credential store backed by the ``tenants`` section of the settings."""

    def __init__(self, settings: AppSettings) -> None:
        """Keep a reference to the loaded settings."""
        self._settings = settings

    def get_credentials(self, tenant: str) -> TenantSettings:
        """Return the tenant's record; unknown tenants have nothing configured."""
        tenants = self._settings.tenants
        # Keys loaded from the environment are lower-cased.
        record = tenants.get(tenant) or tenants.get(tenant.lower())
        return record if record is not None else TenantSettings()


__all__ = [
    "AppSettings",
    "AutoReplySettings",
    "ConnectionSettings",
    "DEFAULT_AUTO_REPLY_BODY",
    "DEFAULT_AUTO_REPLY_SUBJECT",
    "DEFAULT_VACATION_BODY",
    "DEFAULT_VACATION_SUBJECT",
    "LoggingSettings",
    "MessagingSettings",
    "SettingsCredentialStore",
    "StorageSettings",
    "TenantSettings",
    "TrackingSettings",
    "VacationSettings",
    "load_app_settings",
]
