"""Vacation window evaluation and reply template rendering."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time

from ..core.config import TenantSettings, VacationSettings

DEFAULT_RETURN_TEXT = "soon"
DEFAULT_BACKUP_TEXT = "our support team"

_RETURN_DATE_PATTERN = re.compile(r"\{returnDate\}|\{\{return_date\}\}", re.IGNORECASE)
_BACKUP_EMAIL_PATTERN = re.compile(
    r"\{backupEmail\}|\{\{backup_email\}\}", re.IGNORECASE
)


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=UTC)


def _end_of_day(value: date) -> datetime:
    return datetime.combine(value, time(23, 59, 59, 999000), tzinfo=UTC)


def is_vacation_active(settings: VacationSettings, now: datetime) -> bool:
    """Return whether ``now`` falls inside the configured vacation days.

    Both bounds are inclusive whole UTC days. A window missing either bound,
    or ending before it starts, is never active.
    """
    if not settings.enabled or settings.start_date is None or settings.end_date is None:
        return False
    start = _start_of_day(settings.start_date)
    end = _end_of_day(settings.end_date)
    if end < start:
        return False
    return start <= now <= end


def format_return_date(value: date | None) -> str | None:
    """Render a date as e.g. ``December 31, 2025``."""
    if value is None:
        return None
    return f"{value:%B} {value.day}, {value.year}"


def render_vacation_template(
    template: str,
    *,
    return_date: str | None = None,
    backup_email: str | None = None,
) -> str:
    """Substitute the return date and backup contact placeholders."""
    return_text = (return_date or DEFAULT_RETURN_TEXT).strip()
    backup_text = (backup_email or DEFAULT_BACKUP_TEXT).strip()
    output = _RETURN_DATE_PATTERN.sub(lambda _: return_text, template or "")
    return _BACKUP_EMAIL_PATTERN.sub(lambda _: backup_text, output)


def backup_contact(settings: TenantSettings) -> str | None:
    """Pick the address shown as the vacation backup contact."""
    if settings.vacation.backup_email:
        return settings.vacation.backup_email
    if settings.from_email:
        return settings.from_email
    if settings.smtp is not None:
        return settings.smtp.user
    return None


def render_vacation_body(settings: TenantSettings) -> str:
    """Render the tenant's vacation message with its placeholders filled in."""
    return render_vacation_template(
        settings.vacation.message,
        return_date=format_return_date(settings.vacation.end_date),
        backup_email=backup_contact(settings),
    )


__all__ = [
    "DEFAULT_BACKUP_TEXT",
    "DEFAULT_RETURN_TEXT",
    "backup_contact",
    "format_return_date",
    "is_vacation_active",
    "render_vacation_body",
    "render_vacation_template",
]
