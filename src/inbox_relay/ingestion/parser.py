"""Normalise envelopes and raw RFC822 messages into domain models."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses
from typing import cast

from ..core.datetime_utils import ensure_utc, utcnow
from ..core.models import (
    AttachmentInfo,
    Envelope,
    EnvelopeAddress,
    FetchedMessage,
    Mailbox,
    MessageSummary,
    Participant,
    Uid,
)

DEFAULT_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "Unknown sender"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

AddressPair = tuple[str | None, str | None]


# Envelope helpers -------------------------------------------------------------
def format_address(entry: EnvelopeAddress | None) -> str | None:
    """Render an envelope address as ``Name <address>``, name, or address."""
    if entry is None:
        return None
    email_address = entry.address
    if entry.name and email_address:
        return f"{entry.name} <{email_address}>"
    if entry.name:
        return entry.name
    return email_address


def format_address_list(entries: Iterable[EnvelopeAddress]) -> tuple[str, ...]:
    """Render every address that has something to show."""
    rendered = (format_address(entry) for entry in entries)
    return tuple(value for value in rendered if value)


def envelope_address_pairs(entries: Iterable[EnvelopeAddress]) -> list[AddressPair]:
    """Return ``(name, address)`` pairs for envelope addresses."""
    return [(entry.name, entry.address) for entry in entries]


def normalize_email_address(value: str | None) -> str | None:
    """Return the lowercased bare address in ``value``, or ``None``."""
    if not value:
        return None
    trimmed = value.strip()
    if "<" in trimmed and ">" in trimmed:
        trimmed = trimmed[trimmed.index("<") + 1 : trimmed.rindex(">")]
    address = trimmed.strip().lower()
    if not address or "@" not in address:
        return None
    return address


def is_seen(flags: Iterable[str]) -> bool:
    """Return ``True`` when the ``\\Seen`` flag is present."""
    return any(flag.lower() == "\\seen" for flag in flags)


def build_summary(message: FetchedMessage) -> MessageSummary:
    """Convert fetched envelope data into a :class:`MessageSummary`."""
    envelope = message.envelope or Envelope()
    sender = format_address(envelope.from_[0]) if envelope.from_ else None
    return MessageSummary(
        uid=message.uid,
        message_id=envelope.message_id,
        subject=envelope.subject or DEFAULT_SUBJECT,
        sender=sender or UNKNOWN_SENDER,
        to=format_address_list(envelope.to),
        date=ensure_utc(message.internal_date) or utcnow(),
        seen=is_seen(message.flags),
        has_attachments=message.has_attachments,
    )


def sort_newest_first(summaries: list[MessageSummary]) -> list[MessageSummary]:
    """Order summaries by date descending, UID descending on ties."""
    return sorted(summaries, key=lambda item: (item.date, item.uid), reverse=True)


# Participants -----------------------------------------------------------------
def to_participant(name: str | None, address: str | None) -> Participant | None:
    """Build a participant from trimmed parts; ``None`` when both are empty."""
    clean_name = (name or "").strip() or None
    clean_address = (address or "").strip() or None
    if clean_name is None and clean_address is None:
        return None
    return Participant(name=clean_name, address=clean_address)


def merge_participants(*sources: Iterable[AddressPair]) -> list[Participant]:
    """Merge address lists, deduplicating by lowercased address.

    The first occurrence wins; a later occurrence only fills in a missing
    display name. Entries without an address are kept as they are.
    """
    results: list[Participant] = []
    by_address: dict[str, Participant] = {}
    for source in sources:
        for name, address in source:
            participant = to_participant(name, address)
            if participant is None:
                continue
            if participant.address is None:
                results.append(participant)
                continue
            key = participant.address.lower()
            existing = by_address.get(key)
            if existing is not None:
                if not existing.name and participant.name:
                    existing.name = participant.name
                continue
            by_address[key] = participant
            results.append(participant)
    return results


# Raw message parsing ------------------------------------------------------------
@dataclass(slots=True)
class AttachmentPart:
    """Indexed attachment together with the MIME part holding its bytes."""

    info: AttachmentInfo
    part: EmailMessage

    def content(self) -> bytes:
        """Decode and return the attachment payload."""
        payload = self.part.get_payload(decode=True)
        return payload if isinstance(payload, bytes) else b""


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class ParsedMessage:
    """Headers, bodies, and attachment parts recovered from raw source."""

    message: EmailMessage
    subject: str | None
    message_id: str | None
    from_: list[AddressPair] = field(default_factory=list)
    reply_to: list[AddressPair] = field(default_factory=list)
    to: list[AddressPair] = field(default_factory=list)
    cc: list[AddressPair] = field(default_factory=list)
    bcc: list[AddressPair] = field(default_factory=list)
    text: str | None = None
    html: str | None = None
    attachment_parts: list[EmailMessage] = field(default_factory=list)

    def header(self, name: str) -> str | None:
        """Return the first value of header ``name``, trimmed."""
        value = self.message.get(name)
        if value is None:
            return None
        return str(value).strip()


class MessageParser:
    """Convert raw RFC822 payloads into :class:`ParsedMessage` instances."""

    def __init__(self) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)

    def parse(self, payload: bytes) -> ParsedMessage:
        """Parse raw RFC822 bytes; headers-only payloads are accepted."""
        # The default policy always produces EmailMessage instances.
        message = cast(EmailMessage, self._parser.parsebytes(payload))
        text, html, attachments = _split_parts(message)
        return ParsedMessage(
            message=message,
            subject=_optional_header(message, "Subject"),
            message_id=_optional_header(message, "Message-ID"),
            from_=_address_pairs(message, "From"),
            reply_to=_address_pairs(message, "Reply-To"),
            to=_address_pairs(message, "To"),
            cc=_address_pairs(message, "Cc"),
            bcc=_address_pairs(message, "Bcc"),
            text=text,
            html=html,
            attachment_parts=attachments,
        )


def index_attachments(
    mailbox: Mailbox, uid: Uid, parts: Sequence[EmailMessage]
) -> list[AttachmentPart]:
    """Describe attachments without keeping their decoded bytes.

    The identifier is an MD5 checksum of the payload, or
    ``{mailbox}-{uid}-{index}`` when the part has no payload.
    """
    indexed: list[AttachmentPart] = []
    for index, part in enumerate(parts):
        payload = part.get_payload(decode=True)
        data = payload if isinstance(payload, bytes) else b""
        identifier = (
            hashlib.md5(data, usedforsecurity=False).hexdigest()
            if data
            else f"{mailbox}-{uid}-{index}"
        )
        info = AttachmentInfo(
            id=identifier,
            filename=part.get_filename() or f"attachment-{index + 1}.bin",
            content_type=part.get_content_type() or DEFAULT_CONTENT_TYPE,
            size=len(data),
        )
        indexed.append(AttachmentPart(info=info, part=part))
    return indexed


def _optional_header(message: EmailMessage, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _address_pairs(message: EmailMessage, name: str) -> list[AddressPair]:
    headers = [str(value) for value in message.get_all(name, [])]
    return [
        (display or None, address or None) for display, address in getaddresses(headers)
    ]


def _is_attachment(part: EmailMessage) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    if part.get_content_maintype() == "text" and part.get_filename() is None:
        return False
    return part.get_filename() is not None or part.get_content_maintype() != "text"


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _split_parts(
    message: EmailMessage,
) -> tuple[str | None, str | None, list[EmailMessage]]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []
    attachments: list[EmailMessage] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if _is_attachment(part):
            attachments.append(part)
            continue
        try:
            content_obj = part.get_content()
        except LookupError:
            continue
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        content_type = part.get_content_type()
        if content_type == "text/plain":
            plain_chunks.append(content)
        elif content_type == "text/html":
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    html = _collapse_chunks(html_chunks, "\n")
    return text, html, attachments


__all__ = [
    "AttachmentPart",
    "DEFAULT_CONTENT_TYPE",
    "DEFAULT_SUBJECT",
    "MessageParser",
    "ParsedMessage",
    "UNKNOWN_SENDER",
    "build_summary",
    "envelope_address_pairs",
    "format_address",
    "format_address_list",
    "index_attachments",
    "is_seen",
    "merge_participants",
    "normalize_email_address",
    "sort_newest_first",
    "to_participant",
]
