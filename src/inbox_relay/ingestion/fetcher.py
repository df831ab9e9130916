"""Paginated fetch and incremental sync over logical mailboxes."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..core.config import MessagingSettings
from ..core.interfaces import SpamAnalyzer, TrackingService
from ..core.models import (
    AutoMovedSummary,
    FetchedMessage,
    Mailbox,
    MailboxPage,
    MailboxUpdates,
    MessageSummary,
    Uid,
)
from ..mailbox.access import MailboxAccess, TenantSession
from .parser import build_summary, sort_newest_first

if TYPE_CHECKING:
    from ..autoreply.engine import AutoReplyEngine

LOGGER = logging.getLogger(__name__)


def page_window(total: int, page: int, page_size: int) -> tuple[int, int] | None:
    """Return the inclusive sequence window for ``page``, newest first.

    Pages past the oldest message clamp to ``(1, 1)``. ``None`` means the
    mailbox is empty.
    """
    if total <= 0:
        return None
    offset = (page - 1) * page_size
    end = max(1, total - offset)
    start = max(1, total - offset - page_size + 1)
    return start, end


class MailboxReader:
    """Read summaries from a tenant's mailboxes."""

    def __init__(
        self,
        access: MailboxAccess,
        *,
        settings: MessagingSettings | None = None,
        spam_analyzer: SpamAnalyzer | None = None,
        tracking: TrackingService | None = None,
        auto_reply: AutoReplyEngine | None = None,
    ) -> None:
        # pylint: disable=too-many-arguments
        """Initialise the reader with session access and optional collaborators."""
        self._access = access
        self._settings = settings or MessagingSettings()
        self._spam_analyzer = spam_analyzer
        self._tracking = tracking
        self._auto_reply = auto_reply

    def fetch_page(
        self,
        tenant: str,
        mailbox: Mailbox,
        page: int = 1,
        page_size: int | None = None,
    ) -> MailboxPage:
        """Return one page of ``mailbox``, newest messages first."""
        page = max(1, page)
        size = self._clamp_page_size(page_size)

        with self._access.session(tenant) as context:
            status = context.resolver.open(mailbox, readonly=True)
            total = status.exists
            window = page_window(total, page, size)
            if window is None:
                LOGGER.debug(
                    "Mailbox %s is empty; page %s has no messages", mailbox, page
                )
                return MailboxPage(
                    mailbox=mailbox,
                    page=page,
                    page_size=size,
                    total_messages=total,
                    has_more=False,
                )

            start, end = window
            fetched = context.session.fetch_sequence_range(start, end)
            summaries = self._summarize(fetched)
            kept, auto_moved = self._filter_spam(context, mailbox, summaries)
            self._enrich_tracking(tenant, kept)

        LOGGER.info(
            "Fetched %d %s messages for %s (page %s, window %s:%s)",
            len(kept),
            mailbox,
            tenant,
            page,
            start,
            end,
        )
        return MailboxPage(
            mailbox=mailbox,
            page=page,
            page_size=size,
            total_messages=max(0, total - len(auto_moved)),
            has_more=start > 1,
            messages=kept,
            auto_moved=auto_moved,
        )

    def fetch_updates(
        self, tenant: str, mailbox: Mailbox, since_uid: int
    ) -> MailboxUpdates:
        """Return messages whose UID is above the caller's watermark.

        The watermark is never advanced here; callers derive the next one from
        the returned UIDs.
        """
        settings = self._access.settings_for(tenant)
        if settings.imap is not None and since_uid <= 0:
            return MailboxUpdates(total_messages=None)

        with self._access.session(tenant, settings) as context:
            status = context.resolver.open(mailbox, readonly=True)
            total = status.exists
            if status.uid_next is not None and since_uid >= status.uid_next - 1:
                LOGGER.debug("No new %s messages after UID %s", mailbox, since_uid)
                return MailboxUpdates(total_messages=total)

            fetched = context.session.fetch_uid_range(since_uid)
            summaries = self._summarize(fetched)
            kept, auto_moved = self._filter_spam(context, mailbox, summaries)

            if mailbox is Mailbox.INBOX and kept and self._auto_reply is not None:
                try:
                    self._auto_reply.process(context, kept)
                except Exception as exc:  # pylint: disable=broad-except
                    LOGGER.warning("Auto-reply processing failed for %s: %s", tenant, exc)

            self._enrich_tracking(tenant, kept)

        LOGGER.info(
            "Synced %d new %s messages for %s after UID %s",
            len(kept),
            mailbox,
            tenant,
            since_uid,
        )
        return MailboxUpdates(
            total_messages=max(0, total - len(auto_moved)),
            messages=kept,
            auto_moved=auto_moved,
        )

    def move_message(
        self, tenant: str, mailbox: Mailbox, uid: Uid, target: Mailbox
    ) -> None:
        """Move a message between logical mailboxes; same-mailbox moves are no-ops."""
        if mailbox is target:
            return
        with self._access.session(tenant) as context:
            destination = context.resolver.best_candidate(target)
            context.resolver.open(mailbox, readonly=False)
            context.session.move(uid, destination)
        LOGGER.info("Moved UID %s from %s to %s for %s", uid, mailbox, target, tenant)

    # Internal helpers ---------------------------------------------------------
    def _clamp_page_size(self, page_size: int | None) -> int:
        size = page_size or self._settings.default_page_size
        return min(max(1, size), self._settings.max_page_size)

    @staticmethod
    def _summarize(fetched: Sequence[FetchedMessage]) -> list[MessageSummary]:
        return sort_newest_first([build_summary(message) for message in fetched])

    def _filter_spam(
        self,
        context: TenantSession,
        mailbox: Mailbox,
        summaries: list[MessageSummary],
    ) -> tuple[list[MessageSummary], list[AutoMovedSummary]]:
        analyzer = self._spam_analyzer
        if (
            mailbox is not Mailbox.INBOX
            or analyzer is None
            or not context.settings.spam_filter_enabled
            or not summaries
        ):
            return summaries, []

        kept: list[MessageSummary] = []
        auto_moved: list[AutoMovedSummary] = []
        for summary in summaries:
            try:
                verdict = analyzer.analyze(
                    context.tenant, context.session, mailbox, summary.uid
                )
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.warning("Spam analysis failed for UID %s: %s", summary.uid, exc)
                kept.append(summary)
                continue
            if verdict.moved_to_spam:
                auto_moved.append(
                    AutoMovedSummary(
                        uid=summary.uid,
                        subject=summary.subject,
                        sender=summary.sender,
                        score=verdict.score,
                    )
                )
            else:
                kept.append(summary)
        if auto_moved:
            LOGGER.info("Moved %d inbox messages to spam", len(auto_moved))
        return kept, auto_moved

    def _enrich_tracking(self, tenant: str, summaries: list[MessageSummary]) -> None:
        if self._tracking is None:
            return
        message_ids = [item.message_id for item in summaries if item.message_id]
        if not message_ids:
            return
        try:
            stats = self._tracking.summarize(tenant, message_ids)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Tracking lookup failed for %s: %s", tenant, exc)
            return
        for item in summaries:
            if item.message_id and item.message_id in stats:
                item.tracking = stats[item.message_id]


__all__ = ["MailboxReader", "page_window"]
