"""Tests for outbound delivery and Sent folder reconciliation."""

from __future__ import annotations

from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from unittest.mock import MagicMock

import pytest

from fakes import (
    BASE_DATE,
    TENANT,
    FakeMailboxSession,
    FakeSubmissionSession,
    FixedClock,
    SessionFactory,
    StaticCredentials,
    make_access,
    make_tenant_settings,
)
from inbox_relay.core.config import TenantSettings
from inbox_relay.core.errors import (
    ConfigurationError,
    ConnectivityError,
    DeliveryError,
    RecipientError,
)
from inbox_relay.core.models import (
    ComposeRequest,
    DegradedReceipt,
    OutgoingAttachment,
    PreparedRecipient,
    SentReceipt,
)
from inbox_relay.delivery import OutboundDelivery
from inbox_relay.transport import ImapError

REQUEST = ComposeRequest(
    to=("Alice <alice@example.com>", "bob@example.com"),
    cc=("carol@example.com",),
    bcc=("dave@example.com",),
    subject="Quarterly numbers",
    text="Numbers attached",
    html="<p>Numbers attached</p>",
    attachments=(OutgoingAttachment("q.csv", b"a,b\n1,2\n", "text/csv"),),
)


def _delivery(
    mailbox_session: FakeMailboxSession,
    submission_session: FakeSubmissionSession,
    settings: TenantSettings | None = None,
    tracking: MagicMock | None = None,
) -> OutboundDelivery:
    settings = settings or make_tenant_settings()
    return OutboundDelivery(
        StaticCredentials(settings),
        SessionFactory(submission_session),
        make_access(mailbox_session, settings),
        tracking=tracking,
        clock=FixedClock(),
    )


def _html(message: EmailMessage) -> str:
    body = message.get_body(("html",))
    assert body is not None
    return body.get_content()


def test_send_delivers_each_recipient_and_files_copy(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    result = _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert [addresses for _, addresses in submission_session.sent] == [
        ("alice@example.com",),
        ("bob@example.com",),
        ("carol@example.com",),
        ("dave@example.com",),
    ]
    message = submission_session.sent[0][0]
    assert message["From"] == "Acme Support <owner@acme.test>"
    assert message["Subject"] == "Quarterly numbers"
    assert message["Message-ID"].endswith("@acme.test>")
    assert "<p>Numbers attached</p>" in _html(message)
    assert [part.get_filename() for part in message.iter_attachments()] == ["q.csv"]

    assert isinstance(result, SentReceipt)
    assert result.total_messages == 1
    assert result.message is not None
    assert result.message.message_id == message["Message-ID"]
    assert result.message.seen is True
    ((path, _, flags),) = mailbox_session.appended
    assert path == "Sent"
    assert flags == ("\\Seen",)
    assert mailbox_session.folder("Sent").messages[0].internal_date == BASE_DATE


def test_first_failure_aborts_remaining_sends(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    submission_session.failing.add("carol@example.com")

    with pytest.raises(DeliveryError, match="^Failed to send message: All recipients refused"):
        _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert len(submission_session.sent) == 2
    assert mailbox_session.appended == []


def test_disconnect_mid_batch_is_a_delivery_failure(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    submission_session.disconnect_after = 2

    with pytest.raises(
        DeliveryError, match="connection lost after 2 of 4 recipients"
    ) as excinfo:
        _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert not isinstance(excinfo.value, ConnectivityError)
    assert isinstance(excinfo.value.__cause__, ConnectivityError)
    assert mailbox_session.appended == []


def test_disconnect_before_any_recipient_stays_retryable(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    submission_session.disconnect_after = 0

    with pytest.raises(ConnectivityError, match="^Failed to send message: SMTP server"):
        _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert submission_session.sent == []


def test_headers_list_only_parsed_recipients(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    request = ComposeRequest(
        to=("not an address",),
        cc=("Bob <bob@example.com>",),
        subject="x",
        text="x",
        html="",
    )

    _delivery(mailbox_session, submission_session).send(TENANT, request)

    ((message, addresses),) = submission_session.sent
    assert addresses == ("bob@example.com",)
    assert message["To"] is None
    assert message["Cc"] == "Bob <bob@example.com>"


def test_request_without_valid_recipients_is_rejected(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    request = ComposeRequest(to=("not an address",), subject="x", text="x", html="")

    with pytest.raises(RecipientError):
        _delivery(mailbox_session, submission_session).send(TENANT, request)
    assert submission_session.sent == []


def test_missing_smtp_is_a_configuration_error(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    settings = make_tenant_settings(smtp=None)

    with pytest.raises(ConfigurationError, match="SMTP server is not configured"):
        _delivery(mailbox_session, submission_session, settings).send(TENANT, REQUEST)


def test_missing_imap_gives_degraded_receipt(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    settings = make_tenant_settings(imap=None)

    result = _delivery(mailbox_session, submission_session, settings).send(TENANT, REQUEST)

    assert result == DegradedReceipt(reason="IMAP server is not configured")
    assert result.message is None
    assert result.total_messages is None
    assert len(submission_session.sent) == 4


def test_append_failure_gives_degraded_receipt(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    mailbox_session.append_error = ImapError("Failed to append to 'Sent': over quota")

    result = _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert isinstance(result, DegradedReceipt)
    assert "over quota" in result.reason
    assert len(submission_session.sent) == 4


@pytest.mark.parametrize(
    ("reports_uid", "reports_sequence"),
    [(True, False), (False, True), (False, False)],
)
def test_appended_message_is_located_by_any_identifier(
    mailbox_session: FakeMailboxSession,
    submission_session: FakeSubmissionSession,
    reports_uid: bool,
    reports_sequence: bool,
) -> None:
    mailbox_session.add_message("Sent", b"Subject: older\r\n\r\nbody")
    mailbox_session.append_reports_uid = reports_uid
    mailbox_session.append_reports_sequence = reports_sequence

    result = _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert isinstance(result, SentReceipt)
    assert result.message is not None
    assert result.message.uid == 2
    assert result.message.subject == "Quarterly numbers"
    assert result.total_messages == 2


def test_unlocatable_append_gives_degraded_receipt(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    mailbox_session.append_reports_uid = False
    mailbox_session.append_reports_sequence = False
    mailbox_session.search_header = MagicMock(return_value=[])

    result = _delivery(mailbox_session, submission_session).send(TENANT, REQUEST)

    assert isinstance(result, DegradedReceipt)
    assert "could not be located" in result.reason


def _mark_each_recipient(  # pylint: disable=too-many-arguments
    tenant, message_id, subject, sent_at, html, recipients, *, enabled
):  # type: ignore[no-untyped-def]
    return [
        PreparedRecipient(
            address=item.address,
            html=html.replace("</body>", f"<!--{item.address}--></body>"),
        )
        for item in recipients
    ]


def test_each_recipient_gets_its_own_tracked_html(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    tracking = MagicMock()
    tracking.prepare.side_effect = _mark_each_recipient
    tracking.summarize.return_value = {}

    result = _delivery(
        mailbox_session, submission_session, tracking=tracking
    ).send(TENANT, REQUEST)

    bodies = {addresses[0]: _html(message) for message, addresses in submission_session.sent}
    assert "<!--alice@example.com-->" in bodies["alice@example.com"]
    assert "<!--alice@example.com-->" not in bodies["bob@example.com"]
    assert "<!--dave@example.com-->" in bodies["dave@example.com"]
    _, kwargs = tracking.prepare.call_args
    assert kwargs == {"enabled": True}
    assert isinstance(result, SentReceipt)
    filed = BytesParser(policy=policy.default).parsebytes(mailbox_session.appended[0][1])
    assert "<!--alice@example.com-->" in _html(filed)


def test_automated_reply_is_marked_and_filed(
    mailbox_session: FakeMailboxSession, submission_session: FakeSubmissionSession
) -> None:
    settings = make_tenant_settings()

    result = _delivery(mailbox_session, submission_session, settings).send_automated_reply(
        TENANT, settings, to="alice@example.com", subject="Thanks", body="Got it & thanks"
    )

    ((message, addresses),) = submission_session.sent
    assert addresses == ("alice@example.com",)
    assert message["Auto-Submitted"] == "auto-replied"
    assert message["Precedence"] == "bulk"
    assert message["X-Auto-Response-Suppress"] == "All"
    assert "Got it &amp; thanks" in _html(message)
    assert isinstance(result, SentReceipt)
