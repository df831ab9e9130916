"""Tests for auto-reply eligibility, cooldowns and vacation templates."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from email.message import EmailMessage
from unittest.mock import MagicMock

import pytest

from fakes import (
    BASE_DATE,
    OWN_ADDRESS,
    TENANT,
    FakeMailboxSession,
    FixedClock,
    build_raw_message,
    make_tenant_settings,
)
from inbox_relay.autoreply import (
    AutoReplyEngine,
    is_vacation_active,
    render_vacation_template,
)
from inbox_relay.autoreply.engine import has_automated_headers, is_automated_address
from inbox_relay.autoreply.templates import backup_contact, format_return_date
from inbox_relay.core.config import (
    AutoReplySettings,
    TenantSettings,
    VacationSettings,
)
from inbox_relay.core.models import AutoReplyLogEntry, MessageSummary, ReplyType
from inbox_relay.mailbox import TenantSession


class MemoryLogStore:
    """Auto-reply log kept in a list."""

    def __init__(self, entries: list[AutoReplyLogEntry] | None = None) -> None:
        self.entries = list(entries or [])
        self.queries: list[tuple[str, list[str], datetime]] = []

    def create(self, entry: AutoReplyLogEntry) -> None:
        self.entries.append(entry)

    def find_recent(
        self, tenant: str, sender_emails, since: datetime  # type: ignore[no-untyped-def]
    ) -> list[AutoReplyLogEntry]:
        self.queries.append((tenant, list(sender_emails), since))
        return [
            entry
            for entry in self.entries
            if entry.tenant == tenant
            and entry.sender_email in sender_emails
            and entry.sent_at >= since
        ]


STANDARD_SETTINGS = make_tenant_settings(
    auto_reply=AutoReplySettings(enabled=True, subject="Thanks", body="We got it.")
)
VACATION_SETTINGS = make_tenant_settings(
    vacation=VacationSettings(
        enabled=True,
        subject="Away",
        message="Back on {returnDate}. Contact {backupEmail}.",
        start_date=date(2025, 2, 25),
        end_date=date(2025, 3, 5),
        backup_email="deputy@acme.test",
    )
)


def _context(
    session: FakeMailboxSession, settings: TenantSettings
) -> TenantSession:
    session.select_folder("INBOX")
    return TenantSession(
        tenant=TENANT, settings=settings, session=session, resolver=MagicMock()
    )


def _deliver(
    session: FakeMailboxSession, **message: object
) -> MessageSummary:
    stored = session.add_message("INBOX", build_raw_message(**message))  # type: ignore[arg-type]
    return MessageSummary(
        uid=stored.uid,
        message_id=None,
        subject=str(message.get("subject", "Hello")),
        sender=None,
        to=(),
        date=BASE_DATE,
        seen=False,
        has_attachments=False,
    )


def _engine(
    store: MemoryLogStore, delivery: MagicMock | None = None
) -> tuple[AutoReplyEngine, MagicMock]:
    delivery = delivery or MagicMock()
    return AutoReplyEngine(store, delivery, clock=FixedClock()), delivery


# Templates ---------------------------------------------------------------------
@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (datetime(2025, 2, 24, 23, 59, 59, tzinfo=UTC), False),
        (datetime(2025, 2, 25, 0, 0, tzinfo=UTC), True),
        (datetime(2025, 3, 5, 23, 59, 59, tzinfo=UTC), True),
        (datetime(2025, 3, 6, 0, 0, tzinfo=UTC), False),
    ],
)
def test_vacation_window_is_inclusive_by_day(now: datetime, expected: bool) -> None:
    assert is_vacation_active(VACATION_SETTINGS.vacation, now) is expected


def test_vacation_inactive_without_valid_window() -> None:
    now = BASE_DATE
    assert not is_vacation_active(VacationSettings(enabled=True), now)
    assert not is_vacation_active(
        VacationSettings(enabled=True, start_date=date(2025, 3, 2), end_date=date(2025, 2, 1)),
        now,
    )
    assert not is_vacation_active(
        VACATION_SETTINGS.vacation.model_copy(update={"enabled": False}), now
    )


def test_render_vacation_template_accepts_both_placeholder_styles() -> None:
    rendered = render_vacation_template(
        "Back {returnDate} / {{RETURN_DATE}}. Ask {{backup_email}} or {BACKUPEMAIL}.",
        return_date="March 5, 2025",
        backup_email="deputy@acme.test",
    )
    assert rendered == (
        "Back March 5, 2025 / March 5, 2025. Ask deputy@acme.test or deputy@acme.test."
    )


def test_render_vacation_template_defaults() -> None:
    assert render_vacation_template("{returnDate} / {backupEmail}") == "soon / our support team"


def test_format_return_date() -> None:
    assert format_return_date(date(2025, 12, 31)) == "December 31, 2025"
    assert format_return_date(None) is None


def test_backup_contact_fallbacks() -> None:
    assert backup_contact(VACATION_SETTINGS) == "deputy@acme.test"
    assert backup_contact(make_tenant_settings()) == OWN_ADDRESS
    assert backup_contact(make_tenant_settings(from_email=None)) == OWN_ADDRESS
    assert backup_contact(TenantSettings()) is None


# Automated sender detection ------------------------------------------------------
def test_automated_addresses() -> None:
    assert is_automated_address("No-Reply@shop.example")
    assert is_automated_address("MAILER-DAEMON@mx.example")
    assert not is_automated_address("alice@example.com")


def test_automated_headers() -> None:
    def headers(**values: str) -> EmailMessage:
        message = EmailMessage()
        for name, value in values.items():
            message[name.replace("_", "-")] = value
        return message

    assert has_automated_headers(headers(Auto_Submitted="auto-replied"))
    assert not has_automated_headers(headers(Auto_Submitted="no"))
    assert has_automated_headers(headers(Precedence="bulk"))
    assert not has_automated_headers(headers(Precedence="first-class"))
    assert has_automated_headers(headers(X_Autoreply="yes"))
    assert has_automated_headers(headers(X_Auto_Response_Suppress="All"))
    assert not has_automated_headers(headers(Subject="hi"))


# Engine -------------------------------------------------------------------------
def test_standard_reply_is_sent_and_logged(mailbox_session: FakeMailboxSession) -> None:
    store = MemoryLogStore()
    engine, delivery = _engine(store)
    summary = _deliver(mailbox_session, message_id="<q1@example.com>")

    sent = engine.process(_context(mailbox_session, STANDARD_SETTINGS), [summary])

    assert sent == 1
    delivery.send_automated_reply.assert_called_once_with(
        TENANT,
        STANDARD_SETTINGS,
        to="alice@example.com",
        subject="Thanks",
        body="We got it.",
    )
    (entry,) = store.entries
    assert entry.sender_email == "alice@example.com"
    assert entry.reply_type is ReplyType.STANDARD
    assert entry.original_message_id == "<q1@example.com>"
    assert entry.original_uid == summary.uid
    assert entry.sent_at == BASE_DATE


def test_reply_to_header_is_the_target(mailbox_session: FakeMailboxSession) -> None:
    engine, delivery = _engine(MemoryLogStore())
    summary = _deliver(mailbox_session, headers={"Reply-To": "Desk <Desk@Example.com>"})

    engine.process(_context(mailbox_session, STANDARD_SETTINGS), [summary])

    assert delivery.send_automated_reply.call_args.kwargs["to"] == "Desk@Example.com"


def test_vacation_reply_takes_precedence(mailbox_session: FakeMailboxSession) -> None:
    settings = VACATION_SETTINGS.model_copy(
        update={"auto_reply": AutoReplySettings(enabled=True)}
    )
    store = MemoryLogStore()
    engine, delivery = _engine(store)

    engine.process(_context(mailbox_session, settings), [_deliver(mailbox_session)])

    kwargs = delivery.send_automated_reply.call_args.kwargs
    assert kwargs["subject"] == "Away"
    assert kwargs["body"] == "Back on March 5, 2025. Contact deputy@acme.test."
    assert store.entries[0].reply_type is ReplyType.VACATION


def test_same_type_within_cooldown_is_suppressed(
    mailbox_session: FakeMailboxSession,
) -> None:
    store = MemoryLogStore(
        [
            AutoReplyLogEntry(
                tenant=TENANT,
                sender_email="alice@example.com",
                reply_type=ReplyType.STANDARD,
                sent_at=BASE_DATE - timedelta(hours=23),
                original_message_id=None,
                original_uid=None,
            )
        ]
    )
    engine, delivery = _engine(store)

    sent = engine.process(
        _context(mailbox_session, STANDARD_SETTINGS), [_deliver(mailbox_session)]
    )

    assert sent == 0
    delivery.send_automated_reply.assert_not_called()
    assert store.queries == [(TENANT, ["alice@example.com"], BASE_DATE - timedelta(hours=24))]


def test_other_type_within_cooldown_does_not_suppress(
    mailbox_session: FakeMailboxSession,
) -> None:
    store = MemoryLogStore(
        [
            AutoReplyLogEntry(
                tenant=TENANT,
                sender_email="alice@example.com",
                reply_type=ReplyType.STANDARD,
                sent_at=BASE_DATE - timedelta(hours=1),
                original_message_id=None,
                original_uid=None,
            )
        ]
    )
    engine, delivery = _engine(store)

    sent = engine.process(
        _context(mailbox_session, VACATION_SETTINGS), [_deliver(mailbox_session)]
    )

    assert sent == 1
    delivery.send_automated_reply.assert_called_once()


def test_reply_after_cooldown_expires(mailbox_session: FakeMailboxSession) -> None:
    store = MemoryLogStore(
        [
            AutoReplyLogEntry(
                tenant=TENANT,
                sender_email="alice@example.com",
                reply_type=ReplyType.STANDARD,
                sent_at=BASE_DATE - timedelta(hours=25),
                original_message_id=None,
                original_uid=None,
            )
        ]
    )
    engine, _ = _engine(store)

    assert (
        engine.process(
            _context(mailbox_session, STANDARD_SETTINGS), [_deliver(mailbox_session)]
        )
        == 1
    )


def test_one_reply_per_sender_per_batch(mailbox_session: FakeMailboxSession) -> None:
    engine, delivery = _engine(MemoryLogStore())
    first = _deliver(mailbox_session, subject="one")
    second = _deliver(mailbox_session, subject="two", sender="ALICE@example.com")
    other = _deliver(mailbox_session, subject="three", sender="bob@example.com")

    sent = engine.process(
        _context(mailbox_session, STANDARD_SETTINGS), [first, second, other]
    )

    assert sent == 2
    targets = [call.kwargs["to"] for call in delivery.send_automated_reply.call_args_list]
    assert targets == ["alice@example.com", "bob@example.com"]


@pytest.mark.parametrize(
    "message",
    [
        {"sender": f"Me <{OWN_ADDRESS.upper()}>"},
        {"sender": "noreply@shop.example"},
        {"headers": {"Auto-Submitted": "auto-generated"}},
        {"headers": {"Precedence": "junk"}},
        {"headers": {"X-Autorespond": "1"}},
    ],
)
def test_never_replies_to_self_or_automated_senders(
    mailbox_session: FakeMailboxSession, message: dict[str, object]
) -> None:
    engine, delivery = _engine(MemoryLogStore())

    sent = engine.process(
        _context(mailbox_session, STANDARD_SETTINGS), [_deliver(mailbox_session, **message)]
    )

    assert sent == 0
    delivery.send_automated_reply.assert_not_called()


def test_nothing_sent_when_disabled_or_unconfigured(
    mailbox_session: FakeMailboxSession,
) -> None:
    engine, delivery = _engine(MemoryLogStore())
    summary = _deliver(mailbox_session)

    assert engine.process(_context(mailbox_session, make_tenant_settings()), [summary]) == 0
    assert (
        engine.process(
            _context(mailbox_session, STANDARD_SETTINGS.model_copy(update={"smtp": None})),
            [summary],
        )
        == 0
    )
    assert engine.process(_context(mailbox_session, STANDARD_SETTINGS), []) == 0
    delivery.send_automated_reply.assert_not_called()


def test_blank_body_sends_nothing(mailbox_session: FakeMailboxSession) -> None:
    settings = make_tenant_settings(
        auto_reply=AutoReplySettings(enabled=True, body="   ")
    )
    engine, delivery = _engine(MemoryLogStore())

    assert engine.process(_context(mailbox_session, settings), [_deliver(mailbox_session)]) == 0
    delivery.send_automated_reply.assert_not_called()


def test_failed_send_is_not_logged(mailbox_session: FakeMailboxSession) -> None:
    store = MemoryLogStore()
    delivery = MagicMock()
    delivery.send_automated_reply.side_effect = [RuntimeError("refused"), None]
    engine, _ = _engine(store, delivery)
    first = _deliver(mailbox_session, sender="alice@example.com")
    second = _deliver(mailbox_session, sender="bob@example.com")

    sent = engine.process(_context(mailbox_session, STANDARD_SETTINGS), [first, second])

    assert sent == 1
    assert [entry.sender_email for entry in store.entries] == ["bob@example.com"]


def test_log_failure_after_send_still_counts_the_reply(
    mailbox_session: FakeMailboxSession,
) -> None:
    store = MemoryLogStore()
    store.create = MagicMock(side_effect=RuntimeError("database is locked"))  # type: ignore[method-assign]
    engine, delivery = _engine(store)
    first = _deliver(mailbox_session, subject="one")
    second = _deliver(mailbox_session, subject="two")

    sent = engine.process(_context(mailbox_session, STANDARD_SETTINGS), [first, second])

    assert sent == 1
    delivery.send_automated_reply.assert_called_once()
    store.create.assert_called_once()
