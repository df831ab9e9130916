"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import NewType

# Valid only inside one resolved folder and one UIDVALIDITY epoch. Never
# persist it; use the Message-ID header for durable identification.
Uid = NewType("Uid", int)


class Mailbox(StrEnum):
    """Logical mailbox tags, decoupled from server folder paths."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    SPAM = "spam"


class ReplyType(StrEnum):
    """Kinds of automatic responses."""

    STANDARD = "standard"
    VACATION = "vacation"


class RecipientKind(StrEnum):
    """Header a recipient was supplied in."""

    TO = "to"
    CC = "cc"
    BCC = "bcc"


@dataclass(slots=True, frozen=True)
class FolderInfo:
    """Folder as reported by the server's LIST response."""

    path: str
    delimiter: str | None
    flags: tuple[str, ...] = ()

    @property
    def special_use(self) -> str | None:
        """Return the RFC 6154 special-use attribute, if advertised."""
        for flag in self.flags:
            if flag.lower() in _SPECIAL_USE_FLAGS:
                return flag
        return None


_SPECIAL_USE_FLAGS = frozenset(
    {"\\all", "\\archive", "\\drafts", "\\flagged", "\\junk", "\\sent", "\\trash"}
)


@dataclass(slots=True, frozen=True)
class FolderStatus:
    """Result of opening a folder."""

    path: str
    exists: int
    uid_next: int | None


@dataclass(slots=True, frozen=True)
class EnvelopeAddress:
    """Address structure from an IMAP ENVELOPE."""

    name: str | None
    mailbox: str | None
    host: str | None

    @property
    def address(self) -> str | None:
        """Return ``mailbox@host`` when both halves are present."""
        if self.mailbox and self.host:
            return f"{self.mailbox}@{self.host}"
        return None


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True, frozen=True)
class Envelope:
    """Protocol-level message summary returned without the body."""

    date: datetime | None = None
    subject: str | None = None
    from_: tuple[EnvelopeAddress, ...] = ()
    reply_to: tuple[EnvelopeAddress, ...] = ()
    to: tuple[EnvelopeAddress, ...] = ()
    cc: tuple[EnvelopeAddress, ...] = ()
    bcc: tuple[EnvelopeAddress, ...] = ()
    in_reply_to: str | None = None
    message_id: str | None = None


@dataclass(slots=True)
class FetchedMessage:
    """Raw FETCH data for one message, before normalisation."""

    sequence: int
    uid: Uid
    flags: frozenset[str] = frozenset()
    internal_date: datetime | None = None
    envelope: Envelope | None = None
    has_attachments: bool = False
    body: bytes | None = None


@dataclass(slots=True, frozen=True)
class AppendResult:
    """Identifiers the server reported for an appended message."""

    uid: Uid | None
    sequence: int | None


@dataclass(slots=True, frozen=True)
class TrackingStats:
    """Aggregate engagement counters for a sent message."""

    enabled: bool
    total_opens: int
    total_clicks: int


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class MessageSummary:
    """Normalised list entry for a message."""

    uid: Uid
    message_id: str | None
    subject: str
    sender: str | None
    to: tuple[str, ...]
    date: datetime
    seen: bool
    has_attachments: bool
    tracking: TrackingStats | None = None


@dataclass(slots=True, frozen=True)
class AutoMovedSummary:
    """A message the spam analyzer moved out of the inbox."""

    uid: Uid
    subject: str
    sender: str | None
    score: float
    target: Mailbox = Mailbox.SPAM


@dataclass(slots=True)
class MailboxPage:
    """One page of a mailbox, newest first."""

    mailbox: Mailbox
    page: int
    page_size: int
    total_messages: int
    has_more: bool
    messages: list[MessageSummary] = field(default_factory=list)
    auto_moved: list[AutoMovedSummary] = field(default_factory=list)


@dataclass(slots=True)
class MailboxUpdates:
    """Messages that arrived after a watermark UID."""

    total_messages: int | None
    messages: list[MessageSummary] = field(default_factory=list)
    auto_moved: list[AutoMovedSummary] = field(default_factory=list)


@dataclass(slots=True)
class Participant:
    """Display name and address of a message participant."""

    name: str | None
    address: str | None


@dataclass(slots=True, frozen=True)
class AttachmentInfo:
    """Index entry for an attachment; bytes are fetched separately."""

    id: str
    filename: str
    content_type: str
    size: int


@dataclass(slots=True, frozen=True)
class AttachmentContent:
    """Materialised attachment bytes."""

    filename: str
    content_type: str
    content: bytes


@dataclass(slots=True, frozen=True)
class TrackingRecipientDetail:
    """Per-recipient engagement counters."""

    address: str
    name: str | None
    kind: RecipientKind
    open_count: int
    first_opened_at: datetime | None
    last_opened_at: datetime | None
    click_count: int
    last_clicked_at: datetime | None


@dataclass(slots=True, frozen=True)
class TrackingLinkDetail:
    """Click counters for one rewritten link."""

    url: str
    position: int
    total_clicks: int


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True, frozen=True)
class TrackingDetail:
    """Full tracking report for one sent message."""

    message_id: str
    tracking_enabled: bool
    sent_at: datetime
    subject: str | None
    total_opens: int
    total_clicks: int
    recipients: tuple[TrackingRecipientDetail, ...] = ()
    links: tuple[TrackingLinkDetail, ...] = ()


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class MessageDetail:
    """Full view of one message."""

    mailbox: Mailbox
    uid: Uid
    message_id: str | None
    subject: str
    sender: str | None
    to: tuple[str, ...]
    cc: tuple[str, ...]
    bcc: tuple[str, ...]
    reply_to: tuple[str, ...]
    date: datetime
    seen: bool
    html: str | None
    text: str | None
    attachments: tuple[AttachmentInfo, ...]
    from_address: Participant | None
    to_addresses: list[Participant]
    cc_addresses: list[Participant]
    bcc_addresses: list[Participant]
    reply_to_addresses: list[Participant]
    tracking: TrackingDetail | None = None


@dataclass(slots=True, frozen=True)
class OutgoingAttachment:
    """File attached to an outbound message."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(slots=True, frozen=True)
class ComposeRequest:
    """Caller-supplied outbound message."""

    to: tuple[str, ...]
    subject: str
    text: str
    html: str
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    attachments: tuple[OutgoingAttachment, ...] = ()


@dataclass(slots=True, frozen=True)
class Recipient:
    """Parsed recipient address."""

    address: str
    name: str | None
    kind: RecipientKind


@dataclass(slots=True, frozen=True)
class PreparedRecipient:
    """HTML variant prepared for one recipient."""

    address: str
    html: str


@dataclass(slots=True, frozen=True)
class SentReceipt:
    """Delivered message reconciled into the Sent folder."""

    message: MessageSummary | None
    total_messages: int | None


@dataclass(slots=True, frozen=True)
class DegradedReceipt:
    """Delivered message whose presence in Sent could not be confirmed."""

    reason: str

    @property
    def message(self) -> None:
        """Degraded receipts never carry a message."""
        return None

    @property
    def total_messages(self) -> None:
        """Degraded receipts never carry a folder count."""
        return None


SentAppendResult = SentReceipt | DegradedReceipt


@dataclass(slots=True, frozen=True)
class AutoReplyLogEntry:
    """Record of an automatic response sent to a sender."""

    tenant: str
    sender_email: str
    reply_type: ReplyType
    sent_at: datetime
    original_message_id: str | None
    original_uid: Uid | None


@dataclass(slots=True, frozen=True)
class SpamVerdict:
    """Outcome reported by the spam analyzer."""

    moved_to_spam: bool
    already_logged: bool
    score: float


__all__ = [
    "AppendResult",
    "AttachmentContent",
    "AttachmentInfo",
    "AutoMovedSummary",
    "AutoReplyLogEntry",
    "ComposeRequest",
    "DegradedReceipt",
    "Envelope",
    "EnvelopeAddress",
    "FetchedMessage",
    "FolderInfo",
    "FolderStatus",
    "Mailbox",
    "MailboxPage",
    "MailboxUpdates",
    "MessageDetail",
    "MessageSummary",
    "OutgoingAttachment",
    "Participant",
    "PreparedRecipient",
    "Recipient",
    "RecipientKind",
    "ReplyType",
    "SentAppendResult",
    "SentReceipt",
    "SpamVerdict",
    "TrackingDetail",
    "TrackingLinkDetail",
    "TrackingRecipientDetail",
    "TrackingStats",
    "Uid",
]
