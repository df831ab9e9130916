"""Automatic responses for newly synced inbox messages."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses
from typing import cast

from ..core.config import TenantSettings
from ..core.datetime_utils import ensure_utc, utcnow
from ..core.interfaces import AutoReplyLogStore
from ..core.models import AutoReplyLogEntry, MessageSummary, ReplyType, Uid
from ..delivery.outbound import OutboundDelivery
from ..ingestion.parser import normalize_email_address
from ..mailbox.access import TenantSession
from .templates import is_vacation_active, render_vacation_body

LOGGER = logging.getLogger(__name__)

COOLDOWN = timedelta(hours=24)

AUTOMATED_ADDRESS_PATTERNS = (
    "no-reply",
    "noreply",
    "do-not-reply",
    "donotreply",
    "mailer-daemon",
    "postmaster",
)
AUTOMATED_PRECEDENCE = frozenset({"bulk", "junk", "auto_reply"})
AUTOMATED_MARKER_HEADERS = (
    "X-Autoreply",
    "X-Autorespond",
    "X-Auto-Submitted",
    "X-Auto-Response-Suppress",
)


@dataclass(slots=True, frozen=True)
class ReplyCandidate:
    """An inbox message that qualifies for an automatic response."""

    uid: Uid
    message_id: str | None
    target: str
    sender: str


def has_automated_headers(headers: EmailMessage) -> bool:
    """Return whether the headers mark the message as machine generated."""
    auto_submitted = headers.get("Auto-Submitted")
    if auto_submitted is not None and str(auto_submitted).strip().lower() != "no":
        return True
    precedence = headers.get("Precedence")
    if precedence is not None and str(precedence).strip().lower() in AUTOMATED_PRECEDENCE:
        return True
    return any(headers.get(name) is not None for name in AUTOMATED_MARKER_HEADERS)


def is_automated_address(address: str) -> bool:
    """Return whether ``address`` looks like a robot mailbox."""
    lowered = address.lower()
    return any(pattern in lowered for pattern in AUTOMATED_ADDRESS_PATTERNS)


def _first_address(headers: EmailMessage, name: str) -> str | None:
    values = [str(value) for value in headers.get_all(name, [])]
    for _, address in getaddresses(values):
        if address.strip():
            return address.strip()
    return None


class AutoReplyEngine:
    """Decide which synced messages get a standard or vacation reply."""

    def __init__(
        self,
        log_store: AutoReplyLogStore,
        delivery: OutboundDelivery,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialise the engine with its log store and delivery path."""
        self._log_store = log_store
        self._delivery = delivery
        self._clock = clock
        self._parser = BytesParser(policy=policy.default)

    def process(self, context: TenantSession, messages: Sequence[MessageSummary]) -> int:
        """Send due replies for ``messages`` and return how many were sent."""
        settings = context.settings
        if settings.smtp is None or not messages:
            return 0

        now = self._clock()
        vacation_active = is_vacation_active(settings.vacation, now)
        if not vacation_active and not settings.auto_reply.enabled:
            return 0
        reply_type = ReplyType.VACATION if vacation_active else ReplyType.STANDARD
        subject, body = self._payload(settings, reply_type)
        if not body.strip():
            LOGGER.debug("Skipping %s auto-replies with an empty body", reply_type)
            return 0

        candidates = self._collect_candidates(context, messages)
        if not candidates:
            return 0

        recent = self._log_store.find_recent(
            context.tenant,
            sorted({candidate.sender for candidate in candidates}),
            now - COOLDOWN,
        )
        replied = {
            entry.sender_email
            for entry in recent
            if entry.reply_type is reply_type and self._within_cooldown(entry, now)
        }

        sent = 0
        for candidate in candidates:
            if candidate.sender in replied:
                LOGGER.debug("Suppressing %s reply to %s", reply_type, candidate.sender)
                continue
            try:
                self._delivery.send_automated_reply(
                    context.tenant,
                    settings,
                    to=candidate.target,
                    subject=subject,
                    body=body,
                )
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning(
                    "Unable to send %s auto-reply to %s: %s",
                    reply_type,
                    candidate.target,
                    exc,
                )
                continue
            replied.add(candidate.sender)
            sent += 1

            try:
                self._log_store.create(
                    AutoReplyLogEntry(
                        tenant=context.tenant,
                        sender_email=candidate.sender,
                        reply_type=reply_type,
                        sent_at=self._clock(),
                        original_message_id=candidate.message_id,
                        original_uid=candidate.uid,
                    )
                )
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error(
                    "Sent %s auto-reply to %s but could not record it: %s",
                    reply_type,
                    candidate.target,
                    exc,
                )

        if sent:
            LOGGER.info("Sent %d %s auto-replies for %s", sent, reply_type, context.tenant)
        return sent

    # Internal helpers ---------------------------------------------------------
    @staticmethod
    def _payload(settings: TenantSettings, reply_type: ReplyType) -> tuple[str, str]:
        if reply_type is ReplyType.VACATION:
            return settings.vacation.subject, render_vacation_body(settings)
        return settings.auto_reply.subject, settings.auto_reply.body

    @staticmethod
    def _within_cooldown(entry: AutoReplyLogEntry, now: datetime) -> bool:
        sent_at = ensure_utc(entry.sent_at)
        return sent_at is not None and now - sent_at < COOLDOWN

    def _collect_candidates(
        self, context: TenantSession, messages: Sequence[MessageSummary]
    ) -> list[ReplyCandidate]:
        own_address = normalize_email_address(context.settings.sending_address)
        candidates: list[ReplyCandidate] = []
        for summary in messages:
            try:
                raw_headers = context.session.fetch_headers(summary.uid)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Unable to read headers of UID %s: %s", summary.uid, exc)
                continue
            if not raw_headers:
                continue
            headers = cast(
                EmailMessage, self._parser.parsebytes(raw_headers, headersonly=True)
            )
            target = _first_address(headers, "Reply-To") or _first_address(
                headers, "From"
            )
            sender = normalize_email_address(target)
            if target is None or sender is None:
                continue
            if own_address and sender == own_address:
                continue
            if is_automated_address(target) or has_automated_headers(headers):
                LOGGER.debug("Skipping automated sender %s", target)
                continue
            message_id = headers.get("Message-ID")
            candidates.append(
                ReplyCandidate(
                    uid=summary.uid,
                    message_id=str(message_id).strip() if message_id else summary.message_id,
                    target=target,
                    sender=sender,
                )
            )
        return candidates


__all__ = [
    "AUTOMATED_ADDRESS_PATTERNS",
    "AutoReplyEngine",
    "COOLDOWN",
    "has_automated_headers",
    "is_automated_address",
]
