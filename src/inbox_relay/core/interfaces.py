"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

from .config import ConnectionSettings, TenantSettings
from .models import (
    AppendResult,
    AutoReplyLogEntry,
    FetchedMessage,
    FolderInfo,
    FolderStatus,
    PreparedRecipient,
    Recipient,
    SpamVerdict,
    TrackingDetail,
    TrackingStats,
    Uid,
)


class MailboxSession(Protocol):
    """One authenticated mail-retrieval session."""

    def list_folders(self) -> list[FolderInfo]:
        """Return every folder the server reports."""
        raise NotImplementedError

    def select_folder(self, path: str, *, readonly: bool = True) -> FolderStatus:
        """Open ``path`` and return its message count and next UID."""
        raise NotImplementedError

    def fetch_sequence_range(self, start: int, end: int) -> list[FetchedMessage]:
        """Fetch envelopes for sequence numbers ``start..end`` inclusive."""
        raise NotImplementedError

    def fetch_uid_range(self, since_uid: int) -> list[FetchedMessage]:
        """Fetch envelopes for every message whose UID exceeds ``since_uid``."""
        raise NotImplementedError

    def fetch_by_uid(self, uid: Uid, *, body: bool = False) -> FetchedMessage | None:
        """Fetch one message by UID, optionally with its raw source."""
        raise NotImplementedError

    def fetch_by_sequence(self, sequence: int) -> FetchedMessage | None:
        """Fetch one message by sequence number."""
        raise NotImplementedError

    def fetch_headers(self, uid: Uid) -> bytes | None:
        """Fetch the raw header block of one message."""
        raise NotImplementedError

    def append(
        self, path: str, raw: bytes, *, flags: Sequence[str], when: datetime
    ) -> AppendResult:
        """Store ``raw`` in ``path`` and return the identifiers assigned to it."""
        raise NotImplementedError

    def search_header(self, name: str, value: str) -> list[Uid]:
        """Return UIDs in the open folder whose header ``name`` contains ``value``."""
        raise NotImplementedError

    def message_count(self, path: str) -> int | None:
        """Return the number of messages in ``path`` without selecting it."""
        raise NotImplementedError

    def move(self, uid: Uid, destination: str) -> None:
        """Move a message from the open folder to ``destination``."""
        raise NotImplementedError


class SubmissionSession(Protocol):
    """One authenticated mail-submission session."""

    def send(self, message: EmailMessage, *, to_addrs: Sequence[str]) -> None:
        """Submit ``message`` to the envelope recipients ``to_addrs``."""
        raise NotImplementedError

    def noop(self) -> None:
        """Round-trip a no-op command to verify the session."""
        raise NotImplementedError


MailboxSessionFactory = Callable[
    [ConnectionSettings], AbstractContextManager[MailboxSession]
]
SubmissionSessionFactory = Callable[
    [ConnectionSettings], AbstractContextManager[SubmissionSession]
]


class CredentialStore(Protocol):
    """Source of decrypted per-tenant settings."""

    def get_credentials(self, tenant: str) -> TenantSettings:
        """Return the tenant's settings; missing endpoints mean unavailable."""
        raise NotImplementedError


class SpamAnalyzer(Protocol):
    """Scores inbox messages and may move them to the spam folder."""

    def analyze(
        self, tenant: str, session: MailboxSession, mailbox: str, uid: Uid
    ) -> SpamVerdict:
        """Analyse one message inside the already opened folder."""
        raise NotImplementedError


class HtmlSanitizer(Protocol):
    """Pure HTML cleaning function."""

    def sanitize(self, raw_html: str) -> str:
        """Return a copy of ``raw_html`` safe to render."""
        raise NotImplementedError


class TrackingService(Protocol):
    """Injects engagement tracking and reports on it."""

    # pylint: disable=too-many-arguments
    def prepare(
        self,
        tenant: str,
        message_id: str,
        subject: str,
        sent_at: datetime,
        html: str,
        recipients: Sequence[Recipient],
        *,
        enabled: bool,
    ) -> list[PreparedRecipient]:
        """Return one HTML variant per recipient address."""
        raise NotImplementedError

    def summarize(
        self, tenant: str, message_ids: Sequence[str]
    ) -> dict[str, TrackingStats]:
        """Return counters keyed by Message-ID for tracked messages."""
        raise NotImplementedError

    def detail(self, tenant: str, message_id: str) -> TrackingDetail | None:
        """Return the full tracking report for one message."""
        raise NotImplementedError


class AutoReplyLogStore(Protocol):
    """Append-only record of automatic responses."""

    def create(self, entry: AutoReplyLogEntry) -> None:
        """Persist a new log entry."""
        raise NotImplementedError

    def find_recent(
        self, tenant: str, sender_emails: Sequence[str], since: datetime
    ) -> list[AutoReplyLogEntry]:
        """Return entries for ``sender_emails`` sent at or after ``since``."""
        raise NotImplementedError


__all__ = [
    "AutoReplyLogStore",
    "CredentialStore",
    "HtmlSanitizer",
    "MailboxSession",
    "MailboxSessionFactory",
    "SpamAnalyzer",
    "SubmissionSession",
    "SubmissionSessionFactory",
    "TrackingService",
]
