"""Outbound delivery with reconciliation into the Sent folder."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage

from ..core.config import TenantSettings
from ..core.datetime_utils import utcnow
from ..core.errors import (
    ConfigurationError,
    ConnectivityError,
    DeliveryError,
    MessagingError,
    RecipientError,
    ReconciliationError,
)
from ..core.interfaces import CredentialStore, SubmissionSessionFactory, TrackingService
from ..core.models import (
    ComposeRequest,
    DegradedReceipt,
    Mailbox,
    PreparedRecipient,
    Recipient,
    RecipientKind,
    SentAppendResult,
    SentReceipt,
)
from ..ingestion.parser import build_summary
from ..mailbox.access import MailboxAccess, TenantSession
from .composer import (
    AUTOMATED_REPLY_HEADERS,
    build_message,
    format_sender,
    make_message_id,
    parse_recipients,
    plain_text_to_html,
    wrap_email_html,
)

LOGGER = logging.getLogger(__name__)

SENT_FLAGS = ("\\Seen",)


class OutboundDelivery:
    """Send messages per recipient and file a copy in the tenant's Sent folder."""

    def __init__(
        self,
        credentials: CredentialStore,
        open_submission: SubmissionSessionFactory,
        access: MailboxAccess,
        *,
        tracking: TrackingService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        # pylint: disable=too-many-arguments
        """Initialise delivery with credentials, session factories, and tracking."""
        self._credentials = credentials
        self._open_submission = open_submission
        self._access = access
        self._tracking = tracking
        self._clock = clock

    # Public API ---------------------------------------------------------------
    def send(self, tenant: str, request: ComposeRequest) -> SentAppendResult:
        """Deliver ``request`` to every recipient, then reconcile into Sent.

        Raises:
            ConfigurationError: When no SMTP endpoint is configured
            RecipientError: When no recipient address could be parsed
            DeliveryError: When any recipient submission fails
        """
        settings = self._credentials.get_credentials(tenant)
        from_address = self._from_address(tenant, settings)
        recipients = parse_recipients(request.to, request.cc, request.bcc)
        if not recipients:
            raise RecipientError("No valid recipient was provided")

        message_id = make_message_id(from_address)
        sent_at = self._clock()
        base_html = wrap_email_html(
            request.html,
            sender_name=settings.sender_name,
            sender_logo_url=settings.sender_logo_url,
            from_email=from_address,
        )
        prepared = self._prepare(
            tenant, settings, message_id, request.subject, sent_at, base_html, recipients
        )

        def compose(html_body: str) -> EmailMessage:
            return build_message(
                sender=format_sender(from_address, settings.sender_name),
                recipients=recipients,
                subject=request.subject,
                text=request.text,
                html_body=html_body,
                message_id=message_id,
                sent_at=sent_at,
                attachments=request.attachments,
            )

        self._submit(
            settings,
            from_address,
            [(item.address, compose(item.html)) for item in prepared],
        )
        LOGGER.info(
            "Delivered %s to %d recipients for %s", message_id, len(prepared), tenant
        )

        primary_html = prepared[0].html if prepared else base_html
        raw = compose(primary_html).as_bytes()
        return self._reconcile(tenant, settings, raw, message_id, sent_at)

    def send_automated_reply(
        self,
        tenant: str,
        settings: TenantSettings,
        *,
        to: str,
        subject: str,
        body: str,
    ) -> SentAppendResult:
        """Send a plain-text automatic response marked as machine generated."""
        from_address = self._from_address(tenant, settings)
        message_id = make_message_id(from_address)
        sent_at = self._clock()
        html_body = wrap_email_html(
            plain_text_to_html(body),
            sender_name=settings.sender_name,
            sender_logo_url=settings.sender_logo_url,
            from_email=from_address,
        )
        message = build_message(
            sender=format_sender(from_address, settings.sender_name),
            recipients=[Recipient(address=to, name=None, kind=RecipientKind.TO)],
            subject=subject,
            text=body,
            html_body=html_body,
            message_id=message_id,
            sent_at=sent_at,
            headers=AUTOMATED_REPLY_HEADERS,
        )
        self._submit(settings, from_address, [(to, message)])
        LOGGER.info("Sent automatic reply %s to %s for %s", message_id, to, tenant)
        return self._reconcile(tenant, settings, message.as_bytes(), message_id, sent_at)

    # Internal helpers ---------------------------------------------------------
    @staticmethod
    def _from_address(tenant: str, settings: TenantSettings) -> str:
        if settings.smtp is None:
            raise ConfigurationError(
                f"SMTP server is not configured for tenant '{tenant}'"
            )
        address = settings.sending_address
        if not address:
            raise ConfigurationError(f"No sending address configured for '{tenant}'")
        return address

    # pylint: disable=too-many-arguments
    def _prepare(
        self,
        tenant: str,
        settings: TenantSettings,
        message_id: str,
        subject: str,
        sent_at: datetime,
        html_body: str,
        recipients: list[Recipient],
    ) -> list[PreparedRecipient]:
        if self._tracking is None:
            return [
                PreparedRecipient(address=item.address, html=html_body)
                for item in recipients
            ]
        return self._tracking.prepare(
            tenant,
            message_id,
            subject,
            sent_at,
            html_body,
            recipients,
            enabled=settings.tracking_enabled,
        )

    def _submit(
        self,
        settings: TenantSettings,
        from_address: str,
        deliveries: list[tuple[str, EmailMessage]],
    ) -> None:
        """Submit sequentially; the first failure aborts the remaining sends.

        A dropped connection after some recipients were already served is a
        delivery failure, not a retryable connectivity error.
        """
        if settings.smtp is None:
            raise ConfigurationError("SMTP server is not configured")
        delivered = 0
        try:
            with self._open_submission(settings.smtp) as session:
                for address, message in deliveries:
                    LOGGER.debug("Submitting to %s from %s", address, from_address)
                    session.send(message, to_addrs=[address])
                    delivered += 1
        except ConnectivityError as exc:
            if delivered == 0:
                raise exc.with_prefix("Failed to send message") from exc
            LOGGER.error(
                "Connection lost after %d of %d recipients: %s",
                delivered,
                len(deliveries),
                exc,
            )
            raise DeliveryError(
                f"Failed to send message: connection lost after {delivered} of "
                f"{len(deliveries)} recipients: {exc}"
            ) from exc
        except MessagingError as exc:
            raise exc.with_prefix("Failed to send message") from exc

    def _reconcile(
        self,
        tenant: str,
        settings: TenantSettings,
        raw: bytes,
        message_id: str,
        sent_at: datetime,
    ) -> SentAppendResult:
        if settings.imap is None:
            return DegradedReceipt(reason="IMAP server is not configured")
        try:
            with self._access.session(tenant, settings) as context:
                return self._append_to_sent(context, raw, message_id, sent_at)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Unable to file %s in Sent: %s", message_id, exc)
            return DegradedReceipt(reason=str(exc) or exc.__class__.__name__)

    def _append_to_sent(
        self,
        context: TenantSession,
        raw: bytes,
        message_id: str,
        sent_at: datetime,
    ) -> SentReceipt:
        session = context.session
        status = context.resolver.open(Mailbox.SENT, readonly=False)
        appended = session.append(status.path, raw, flags=SENT_FLAGS, when=sent_at)

        fetched = None
        if appended.uid is not None:
            fetched = session.fetch_by_uid(appended.uid)
        if fetched is None and appended.sequence is not None:
            fetched = session.fetch_by_sequence(appended.sequence)
        if fetched is None:
            try:
                matches = session.search_header("Message-ID", message_id)
            except MessagingError as exc:
                LOGGER.warning("Searching Sent for %s failed: %s", message_id, exc)
                matches = []
            if matches:
                fetched = session.fetch_by_uid(matches[-1])
        if fetched is None:
            raise ReconciliationError(f"Appended message {message_id} could not be located")

        try:
            total = session.message_count(status.path)
        except MessagingError as exc:
            LOGGER.debug("STATUS failed for %s: %s", status.path, exc)
            total = None
        if total is None:
            total = status.exists + 1

        summary = build_summary(fetched)
        if summary.message_id and self._tracking is not None:
            try:
                stats = self._tracking.summarize(context.tenant, [summary.message_id])
                summary.tracking = stats.get(summary.message_id)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Tracking lookup failed for %s: %s", message_id, exc)
        return SentReceipt(message=summary, total_messages=total)


__all__ = ["OutboundDelivery", "SENT_FLAGS"]
