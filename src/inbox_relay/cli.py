"""Command-line entry point for Inbox Relay."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from inbox_relay.core import AppSettings, MessagingError, configure_logging, load_app_settings
from inbox_relay.core.config import SettingsCredentialStore
from inbox_relay.core.models import ComposeRequest, Mailbox, MessageSummary
from inbox_relay.service import MessagingService


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox Relay messaging engine")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "--tenant",
        default="default",
        help="Tenant whose mailboxes are used (default: default).",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "fetch", "sync", "send", "test-imap", "test-smtp"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--mailbox",
        type=Mailbox,
        choices=list(Mailbox),
        default=Mailbox.INBOX,
        help="Logical mailbox for fetch and sync (default: inbox).",
    )
    parser.add_argument("--page", type=int, default=1, help="Page number for fetch.")
    parser.add_argument(
        "--page-size", dest="page_size", type=int, default=None, help="Page size for fetch."
    )
    parser.add_argument(
        "--since-uid",
        dest="since_uid",
        type=int,
        default=0,
        help="Watermark UID for sync; messages above it are returned.",
    )
    parser.add_argument("--to", action="append", default=[], help="Recipient (repeatable).")
    parser.add_argument("--cc", action="append", default=[], help="Cc recipient (repeatable).")
    parser.add_argument("--bcc", action="append", default=[], help="Bcc recipient (repeatable).")
    parser.add_argument("--subject", default="", help="Subject for send.")
    parser.add_argument("--text", default="", help="Plain-text body for send.")
    parser.add_argument("--html", default=None, help="HTML body for send.")
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit status."""
    command = args.command
    if command == "info":
        _print_info(settings, args.tenant)
        return 0

    service = MessagingService.from_settings(settings)
    try:
        asyncio.run(_dispatch(service, args, settings))
    except MessagingError as exc:
        print(f"{command} failed: {exc}")
        return 1
    finally:
        service.close()
    return 0


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


async def _dispatch(
    service: MessagingService, args: argparse.Namespace, settings: AppSettings
) -> None:
    tenant = args.tenant
    command = args.command
    if command == "fetch":
        page = await service.fetch_page(tenant, args.mailbox, args.page, args.page_size)
        print(
            f"Page {page.page} of {page.mailbox}: {len(page.messages)} message(s), "
            f"{page.total_messages} total, more={page.has_more}"
        )
        _print_summaries(page.messages)
        for moved in page.auto_moved:
            print(f"  moved to spam: UID {moved.uid} {moved.subject}")
    elif command == "sync":
        updates = await service.fetch_updates(tenant, args.mailbox, args.since_uid)
        print(f"{len(updates.messages)} new message(s) after UID {args.since_uid}")
        _print_summaries(updates.messages)
        if updates.messages:
            print(f"Next watermark: {max(item.uid for item in updates.messages)}")
    elif command == "send":
        request = ComposeRequest(
            to=tuple(args.to),
            cc=tuple(args.cc),
            bcc=tuple(args.bcc),
            subject=args.subject,
            text=args.text,
            html=args.html if args.html is not None else args.text,
        )
        receipt = await service.send_message(tenant, request)
        if receipt.message is None:
            print("Message delivered; Sent folder copy could not be confirmed.")
        else:
            print(
                f"Message delivered and filed as UID {receipt.message.uid} "
                f"({receipt.total_messages} in Sent)."
            )
    elif command in {"test-imap", "test-smtp"}:
        record = SettingsCredentialStore(settings).get_credentials(tenant)
        connection = record.imap if command == "test-imap" else record.smtp
        label = "IMAP" if command == "test-imap" else "SMTP"
        if connection is None:
            print(f"{label} is not configured for tenant '{tenant}'.")
            return
        if command == "test-imap":
            await service.test_imap_connection(connection)
        else:
            await service.test_smtp_connection(connection)
        print(f"{label} connection to {connection.host}:{connection.port} succeeded.")


def _print_info(settings: AppSettings, tenant: str) -> None:
    record = SettingsCredentialStore(settings).get_credentials(tenant)
    print("Inbox Relay is ready. Configure tenant IMAP and SMTP settings to get started.")
    print(f"Tenant: {tenant}")
    print(f"IMAP host: {record.imap.host if record.imap else '(not configured)'}")
    print(f"SMTP host: {record.smtp.host if record.smtp else '(not configured)'}")
    print(f"Database path: {settings.storage.db_path}")
    print(f"Tracking base URL: {settings.tracking.base_url}")


def _print_summaries(messages: list[MessageSummary]) -> None:
    for message in messages:
        marker = " " if message.seen else "*"
        print(
            f"{marker} {message.uid:>6}  {message.date:%Y-%m-%d %H:%M}  "
            f"{(message.sender or '-')[:30]:<30}  {message.subject}"
        )


if __name__ == "__main__":
    main()
