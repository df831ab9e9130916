"""Tests for the command-line entry point."""

from __future__ import annotations

from datetime import timedelta

import pytest

from fakes import (
    BASE_DATE,
    TENANT,
    FakeMailboxSession,
    SessionFactory,
    build_raw_message,
)
from inbox_relay import cli
from inbox_relay.core.config import AppSettings
from inbox_relay.core.models import Mailbox
from inbox_relay.service import MessagingService


def _run(argv: list[str], settings: AppSettings) -> int:
    args = cli.build_parser().parse_args(argv)
    return cli.execute(args, settings)


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.command == "info"
    assert args.tenant == "default"
    assert args.mailbox is Mailbox.INBOX
    assert args.since_uid == 0


def test_parser_collects_repeated_recipients() -> None:
    args = cli.build_parser().parse_args(
        ["send", "--to", "a@example.com", "--to", "b@example.com", "--mailbox", "sent"]
    )

    assert args.to == ["a@example.com", "b@example.com"]
    assert args.mailbox is Mailbox.SENT


def test_info_reports_tenant_hosts(
    app_settings: AppSettings, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(["--tenant", TENANT], app_settings) == 0

    output = capsys.readouterr().out
    assert f"Tenant: {TENANT}" in output
    assert "IMAP host: imap.acme.test" in output
    assert "Tracking base URL: https://relay.test/" in output


def test_fetch_prints_summaries(
    app_settings: AppSettings,
    mailbox_session: FakeMailboxSession,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    mailbox_session.add_message(
        "INBOX",
        build_raw_message(subject="Weekly numbers"),
        internal_date=BASE_DATE + timedelta(days=1),
    )

    class _Service:
        @staticmethod
        def from_settings(settings: AppSettings) -> MessagingService:
            return MessagingService.from_settings(
                settings, open_mailbox=SessionFactory(mailbox_session)
            )

    monkeypatch.setattr(cli, "MessagingService", _Service)

    assert _run(["--tenant", TENANT, "fetch"], app_settings) == 0

    output = capsys.readouterr().out
    assert "Page 1 of inbox: 1 message(s), 1 total, more=False" in output
    assert "2025-03-02 09:00" in output
    assert "Weekly numbers" in output


def test_fetch_without_imap_fails(
    app_settings: AppSettings, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(["--tenant", "ghost", "fetch"], app_settings) == 1

    assert capsys.readouterr().out.startswith("fetch failed:")


def test_connection_check_skips_unconfigured_endpoint(
    app_settings: AppSettings, capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(["--tenant", "ghost", "test-smtp"], app_settings) == 0

    assert "SMTP is not configured for tenant 'ghost'." in capsys.readouterr().out
