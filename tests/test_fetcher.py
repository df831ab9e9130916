"""Tests for paginated fetch, incremental sync and moves."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from fakes import (
    BASE_DATE,
    TENANT,
    FakeMailboxSession,
    build_raw_message,
    make_access,
    make_tenant_settings,
)
from inbox_relay.core.config import MessagingSettings
from inbox_relay.core.errors import ConfigurationError, FolderNotFoundError
from inbox_relay.core.models import Mailbox, SpamVerdict, TrackingStats, Uid
from inbox_relay.ingestion import MailboxReader, page_window
from inbox_relay.mailbox import MailboxAccess


def _fill_inbox(session: FakeMailboxSession, count: int) -> None:
    for index in range(1, count + 1):
        session.add_message(
            "INBOX",
            build_raw_message(subject=f"Message {index}", message_id=f"<m{index}@example.com>"),
            internal_date=BASE_DATE + timedelta(minutes=index),
        )


class SpamByUid:
    """Spam analyzer that moves a fixed set of UIDs."""

    def __init__(self, spam_uids: set[int]) -> None:
        self.spam_uids = spam_uids
        self.analyzed: list[int] = []

    def analyze(self, tenant, session, mailbox, uid):  # type: ignore[no-untyped-def]
        self.analyzed.append(uid)
        if uid in self.spam_uids:
            session.move(uid, "Spam")
            return SpamVerdict(moved_to_spam=True, already_logged=False, score=9.5)
        return SpamVerdict(moved_to_spam=False, already_logged=True, score=0.1)


def test_page_window_counts_back_from_newest() -> None:
    assert page_window(45, 1, 20) == (26, 45)
    assert page_window(45, 2, 20) == (6, 25)
    assert page_window(45, 3, 20) == (1, 5)
    assert page_window(45, 4, 20) == (1, 1)
    assert page_window(45, 9, 20) == (1, 1)
    assert page_window(0, 1, 20) is None


def test_first_page_returns_newest_window(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 45)

    page = MailboxReader(mailbox_access).fetch_page(TENANT, Mailbox.INBOX, 1, 20)

    assert page.total_messages == 45
    assert page.has_more is True
    assert len(page.messages) == 20
    assert [item.uid for item in page.messages[:2]] == [45, 44]
    assert page.messages[-1].uid == 26
    assert page.messages[0].subject == "Message 45"


def test_last_page_has_no_more(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 45)

    page = MailboxReader(mailbox_access).fetch_page(TENANT, Mailbox.INBOX, 3, 20)

    assert [item.uid for item in page.messages] == [5, 4, 3, 2, 1]
    assert page.has_more is False


def test_pages_cover_every_message_once(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 23)
    reader = MailboxReader(mailbox_access)

    seen: list[int] = []
    for page in range(1, 6):
        result = reader.fetch_page(TENANT, Mailbox.INBOX, page, 5)
        dates = [item.date for item in result.messages]
        assert dates == sorted(dates, reverse=True)
        seen.extend(item.uid for item in result.messages)
        assert result.has_more is (page < 5)

    assert sorted(seen) == list(range(1, 24))


def test_messages_sorted_by_date_not_sequence(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    mailbox_session.add_message(
        "INBOX", build_raw_message(subject="late"), internal_date=BASE_DATE + timedelta(days=2)
    )
    mailbox_session.add_message(
        "INBOX", build_raw_message(subject="early"), internal_date=BASE_DATE
    )

    page = MailboxReader(mailbox_access).fetch_page(TENANT, Mailbox.INBOX)

    assert [item.subject for item in page.messages] == ["late", "early"]


def test_empty_and_out_of_range_pages(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    reader = MailboxReader(mailbox_access)

    empty = reader.fetch_page(TENANT, Mailbox.SENT)
    assert empty.messages == []
    assert empty.total_messages == 0
    assert empty.has_more is False

    _fill_inbox(mailbox_session, 3)
    beyond = reader.fetch_page(TENANT, Mailbox.INBOX, page=5, page_size=2)
    assert [item.subject for item in beyond.messages] == ["Message 1"]
    assert beyond.total_messages == 3
    assert beyond.has_more is False


def test_page_size_is_clamped(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 5)
    reader = MailboxReader(
        mailbox_access, settings=MessagingSettings(default_page_size=2, max_page_size=3)
    )

    assert reader.fetch_page(TENANT, Mailbox.INBOX).page_size == 2
    assert len(reader.fetch_page(TENANT, Mailbox.INBOX, page_size=50).messages) == 3


def test_spam_is_moved_and_excluded_from_totals(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 4)
    analyzer = SpamByUid({2, 4})

    page = MailboxReader(mailbox_access, spam_analyzer=analyzer).fetch_page(
        TENANT, Mailbox.INBOX
    )

    assert [item.uid for item in page.messages] == [3, 1]
    assert [item.uid for item in page.auto_moved] == [4, 2]
    assert page.auto_moved[0].target is Mailbox.SPAM
    assert page.auto_moved[0].score == 9.5
    assert page.total_messages == 2
    assert len(mailbox_session.folder("Spam").messages) == 2


def test_spam_filter_skipped_when_disabled(
    mailbox_session: FakeMailboxSession,
) -> None:
    _fill_inbox(mailbox_session, 2)
    analyzer = SpamByUid({1, 2})
    access = make_access(mailbox_session, make_tenant_settings(spam_filter_enabled=False))

    page = MailboxReader(access, spam_analyzer=analyzer).fetch_page(TENANT, Mailbox.INBOX)

    assert len(page.messages) == 2
    assert analyzer.analyzed == []


def test_spam_analysis_failure_keeps_message(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 1)
    analyzer = MagicMock()
    analyzer.analyze.side_effect = RuntimeError("scorer offline")

    page = MailboxReader(mailbox_access, spam_analyzer=analyzer).fetch_page(
        TENANT, Mailbox.INBOX
    )

    assert [item.uid for item in page.messages] == [1]
    assert page.auto_moved == []


def test_tracking_stats_are_attached(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    mailbox_session.add_message("Sent", build_raw_message(message_id="<sent-1@acme.test>"))
    tracking = MagicMock()
    tracking.summarize.return_value = {
        "<sent-1@acme.test>": TrackingStats(enabled=True, total_opens=3, total_clicks=1)
    }

    page = MailboxReader(mailbox_access, tracking=tracking).fetch_page(TENANT, Mailbox.SENT)

    assert page.messages[0].tracking == TrackingStats(True, 3, 1)
    tracking.summarize.assert_called_once_with(TENANT, ["<sent-1@acme.test>"])


def test_tracking_failure_is_not_fatal(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    mailbox_session.add_message("Sent", build_raw_message())
    tracking = MagicMock()
    tracking.summarize.side_effect = RuntimeError("db locked")

    page = MailboxReader(mailbox_access, tracking=tracking).fetch_page(TENANT, Mailbox.SENT)

    assert page.messages[0].tracking is None


def test_missing_folder_raises(mailbox_access: MailboxAccess) -> None:
    with pytest.raises(FolderNotFoundError):
        MailboxReader(mailbox_access).fetch_page(TENANT, Mailbox.DRAFTS)


def test_missing_imap_settings_raise(mailbox_session: FakeMailboxSession) -> None:
    access = make_access(mailbox_session, make_tenant_settings(imap=None))

    with pytest.raises(ConfigurationError):
        MailboxReader(access).fetch_page(TENANT, Mailbox.INBOX)
    with pytest.raises(ConfigurationError):
        MailboxReader(access).fetch_updates(TENANT, Mailbox.INBOX, 0)


def test_updates_without_watermark_do_nothing(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 3)

    updates = MailboxReader(mailbox_access).fetch_updates(TENANT, Mailbox.INBOX, 0)

    assert updates.messages == []
    assert updates.total_messages is None
    assert mailbox_session.select_calls == []


def test_updates_return_only_newer_messages(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 5)

    updates = MailboxReader(mailbox_access).fetch_updates(TENANT, Mailbox.INBOX, 3)

    assert [item.uid for item in updates.messages] == [5, 4]
    assert updates.total_messages == 5


def test_updates_at_latest_uid_skip_fetch(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 5)
    reader = MailboxReader(mailbox_access)

    first = reader.fetch_updates(TENANT, Mailbox.INBOX, 5)
    second = reader.fetch_updates(TENANT, Mailbox.INBOX, 5)

    assert first.messages == second.messages == []
    assert first.total_messages == 5
    assert mailbox_session.uid_range_calls == []


def test_auto_reply_runs_for_inbox_updates_only(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 2)
    mailbox_session.add_message("Sent", build_raw_message())
    mailbox_session.add_message("Sent", build_raw_message())
    auto_reply = MagicMock()
    reader = MailboxReader(mailbox_access, auto_reply=auto_reply)

    reader.fetch_updates(TENANT, Mailbox.SENT, 1)
    auto_reply.process.assert_not_called()

    reader.fetch_updates(TENANT, Mailbox.INBOX, 1)
    auto_reply.process.assert_called_once()
    context, messages = auto_reply.process.call_args.args
    assert context.tenant == TENANT
    assert [item.uid for item in messages] == [2]


def test_auto_reply_failure_does_not_break_sync(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 2)
    auto_reply = MagicMock()
    auto_reply.process.side_effect = RuntimeError("smtp down")

    updates = MailboxReader(mailbox_access, auto_reply=auto_reply).fetch_updates(
        TENANT, Mailbox.INBOX, 1
    )

    assert [item.uid for item in updates.messages] == [2]


def test_auto_reply_skips_messages_moved_to_spam(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 3)
    auto_reply = MagicMock()

    updates = MailboxReader(
        mailbox_access, spam_analyzer=SpamByUid({3}), auto_reply=auto_reply
    ).fetch_updates(TENANT, Mailbox.INBOX, 1)

    assert [item.uid for item in updates.auto_moved] == [3]
    assert updates.total_messages == 2
    _, messages = auto_reply.process.call_args.args
    assert [item.uid for item in messages] == [2]


def test_move_message_between_mailboxes(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    _fill_inbox(mailbox_session, 2)

    MailboxReader(mailbox_access).move_message(TENANT, Mailbox.INBOX, Uid(1), Mailbox.TRASH)

    assert mailbox_session.moved == [(1, "INBOX", "Trash")]
    assert ("INBOX", False) in mailbox_session.select_calls


def test_move_to_same_mailbox_is_a_no_op(
    mailbox_session: FakeMailboxSession, mailbox_access: MailboxAccess
) -> None:
    MailboxReader(mailbox_access).move_message(TENANT, Mailbox.INBOX, Uid(1), Mailbox.INBOX)

    assert mailbox_session.select_calls == []
    assert mailbox_session.moved == []
