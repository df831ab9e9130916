"""Message detail assembly and lazy attachment retrieval."""

from __future__ import annotations

import logging

from ..core.errors import AttachmentNotFoundError, MessageNotFoundError
from ..core.interfaces import HtmlSanitizer, TrackingService
from ..core.models import (
    AttachmentContent,
    Envelope,
    FetchedMessage,
    Mailbox,
    MessageDetail,
    TrackingDetail,
    Uid,
)
from ..mailbox.access import MailboxAccess, TenantSession
from .parser import (
    DEFAULT_SUBJECT,
    MessageParser,
    build_summary,
    envelope_address_pairs,
    format_address_list,
    index_attachments,
    merge_participants,
)
from .sanitizer import EmailHtmlSanitizer

LOGGER = logging.getLogger(__name__)


class MessageDetailReader:
    """Fetch a whole message once and assemble its detail view."""

    def __init__(
        self,
        access: MailboxAccess,
        *,
        sanitizer: HtmlSanitizer | None = None,
        tracking: TrackingService | None = None,
        parser: MessageParser | None = None,
    ) -> None:
        """Initialise the reader with session access and collaborators."""
        self._access = access
        self._sanitizer = sanitizer or EmailHtmlSanitizer()
        self._tracking = tracking
        self._parser = parser or MessageParser()

    def fetch_detail(self, tenant: str, mailbox: Mailbox, uid: Uid) -> MessageDetail:
        """Return the full view of one message; attachment bytes are not kept."""
        with self._access.session(tenant) as context:
            fetched, body, envelope = self._fetch_source(context, mailbox, uid)

        parsed = self._parser.parse(body)
        summary = build_summary(fetched)

        attachments = index_attachments(mailbox, uid, parsed.attachment_parts)
        from_participants = merge_participants(
            envelope_address_pairs(envelope.from_), parsed.from_
        )

        return MessageDetail(
            mailbox=mailbox,
            uid=uid,
            message_id=envelope.message_id,
            subject=envelope.subject or DEFAULT_SUBJECT,
            sender=summary.sender,
            to=format_address_list(envelope.to),
            cc=format_address_list(envelope.cc),
            bcc=format_address_list(envelope.bcc),
            reply_to=format_address_list(envelope.reply_to),
            date=summary.date,
            seen=summary.seen,
            html=self._sanitizer.sanitize(parsed.html) if parsed.html else None,
            text=parsed.text,
            attachments=tuple(item.info for item in attachments),
            from_address=from_participants[0] if from_participants else None,
            to_addresses=merge_participants(
                envelope_address_pairs(envelope.to), parsed.to
            ),
            cc_addresses=merge_participants(
                envelope_address_pairs(envelope.cc), parsed.cc
            ),
            bcc_addresses=merge_participants(
                envelope_address_pairs(envelope.bcc), parsed.bcc
            ),
            reply_to_addresses=merge_participants(
                envelope_address_pairs(envelope.reply_to), parsed.reply_to
            ),
            tracking=self._tracking_detail(tenant, mailbox, envelope.message_id),
        )

    def fetch_attachment(
        self, tenant: str, mailbox: Mailbox, uid: Uid, attachment_id: str
    ) -> AttachmentContent:
        """Re-fetch the message and return one attachment's bytes."""
        with self._access.session(tenant) as context:
            _, body, _ = self._fetch_source(context, mailbox, uid)

        parsed = self._parser.parse(body)
        for item in index_attachments(mailbox, uid, parsed.attachment_parts):
            if item.info.id == attachment_id:
                return AttachmentContent(
                    filename=item.info.filename,
                    content_type=item.info.content_type,
                    content=item.content(),
                )
        raise AttachmentNotFoundError(
            f"Attachment '{attachment_id}' not found in message {uid}"
        )

    # Internal helpers ---------------------------------------------------------
    @staticmethod
    def _fetch_source(
        context: TenantSession, mailbox: Mailbox, uid: Uid
    ) -> tuple[FetchedMessage, bytes, Envelope]:
        context.resolver.open(mailbox, readonly=True)
        fetched = context.session.fetch_by_uid(uid, body=True)
        if fetched is None or fetched.body is None or fetched.envelope is None:
            raise MessageNotFoundError(f"Message {uid} not found in {mailbox}")
        return fetched, fetched.body, fetched.envelope

    def _tracking_detail(
        self, tenant: str, mailbox: Mailbox, message_id: str | None
    ) -> TrackingDetail | None:
        if self._tracking is None or mailbox is not Mailbox.SENT or not message_id:
            return None
        try:
            return self._tracking.detail(tenant, message_id)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Tracking detail lookup failed for %s: %s", message_id, exc)
            return None


__all__ = ["MessageDetailReader"]
