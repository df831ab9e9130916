"""Async façade over the blocking mailbox, delivery and tracking engines."""

from __future__ import annotations

import asyncio
import functools
import logging

from .autoreply import AutoReplyEngine
from .core.config import AppSettings, ConnectionSettings, SettingsCredentialStore
from .core.container import ServiceContainer
from .core.errors import ConfigurationError, format_error
from .core.interfaces import (
    CredentialStore,
    MailboxSessionFactory,
    SpamAnalyzer,
    SubmissionSessionFactory,
)
from .core.models import (
    AttachmentContent,
    ComposeRequest,
    Mailbox,
    MailboxPage,
    MailboxUpdates,
    MessageDetail,
    SentAppendResult,
    Uid,
)
from .delivery import OutboundDelivery
from .ingestion import EmailHtmlSanitizer, MailboxReader, MessageDetailReader
from .mailbox import FolderCacheRegistry, MailboxAccess
from .mailbox.scoring import INBOX_PATH
from .storage import SqliteMessagingStore
from .tracking import EmailTracker
from .transport import ImapClient, SmtpClient

LOGGER = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535


def ensure_non_empty(value: str | None, field_name: str) -> str:
    """Return ``value`` stripped, raising when it is blank."""
    trimmed = (value or "").strip()
    if not trimmed:
        raise ConfigurationError(f"{field_name} is required")
    return trimmed


def ensure_port(value: int, label: str) -> int:
    """Validate a TCP port number."""
    if not MIN_PORT <= value <= MAX_PORT:
        raise ConfigurationError(
            f"{label} port must be between {MIN_PORT} and {MAX_PORT}"
        )
    return value


def validate_connection(settings: ConnectionSettings, label: str) -> None:
    """Reject connection settings with blank fields or an invalid port."""
    ensure_non_empty(settings.host, f"{label} host")
    ensure_port(settings.port, label)
    ensure_non_empty(settings.user, f"{label} user")
    ensure_non_empty(settings.password.get_secret_value(), f"{label} password")


def build_container(
    settings: AppSettings,
    *,
    credentials: CredentialStore | None = None,
    spam_analyzer: SpamAnalyzer | None = None,
    open_mailbox: MailboxSessionFactory | None = None,
    open_submission: SubmissionSessionFactory | None = None,
) -> ServiceContainer:
    """Register every collaborator the messaging service needs."""
    timeout = float(settings.messaging.timeout_seconds)
    container = ServiceContainer()
    container.register_instance("settings", settings)
    container.register_instance(
        "credentials", credentials or SettingsCredentialStore(settings)
    )
    container.register_instance(
        "open_mailbox", open_mailbox or functools.partial(ImapClient, timeout=timeout)
    )
    container.register_instance(
        "open_submission",
        open_submission or functools.partial(SmtpClient, timeout=timeout),
    )
    container.register_instance("spam_analyzer", spam_analyzer)

    container.register("folder_caches", lambda c: FolderCacheRegistry())
    container.register(
        "mailbox_access",
        lambda c: MailboxAccess(
            c.resolve("credentials"),
            c.resolve("open_mailbox"),
            c.resolve("folder_caches"),
        ),
    )
    container.register("store", lambda c: SqliteMessagingStore(settings.storage))
    container.register(
        "tracker", lambda c: EmailTracker(c.resolve("store"), settings.tracking)
    )
    container.register(
        "delivery",
        lambda c: OutboundDelivery(
            c.resolve("credentials"),
            c.resolve("open_submission"),
            c.resolve("mailbox_access"),
            tracking=c.resolve("tracker"),
        ),
    )
    container.register(
        "auto_reply",
        lambda c: AutoReplyEngine(c.resolve("store"), c.resolve("delivery")),
    )
    container.register(
        "reader",
        lambda c: MailboxReader(
            c.resolve("mailbox_access"),
            settings=settings.messaging,
            spam_analyzer=c.resolve("spam_analyzer"),
            tracking=c.resolve("tracker"),
            auto_reply=c.resolve("auto_reply"),
        ),
    )
    container.register(
        "detail_reader",
        lambda c: MessageDetailReader(
            c.resolve("mailbox_access"),
            sanitizer=EmailHtmlSanitizer(),
            tracking=c.resolve("tracker"),
        ),
    )
    return container


class MessagingService:
    """Expose each messaging operation as a coroutine.

    Every call runs its blocking engine on a worker thread and opens its own
    sessions; nothing is pooled between calls.
    """

    def __init__(self, container: ServiceContainer) -> None:
        """Bind the service to a populated container."""
        self._container = container

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        *,
        spam_analyzer: SpamAnalyzer | None = None,
        open_mailbox: MailboxSessionFactory | None = None,
        open_submission: SubmissionSessionFactory | None = None,
    ) -> MessagingService:
        """Build a service wired from application settings."""
        return cls(
            build_container(
                settings,
                spam_analyzer=spam_analyzer,
                open_mailbox=open_mailbox,
                open_submission=open_submission,
            )
        )

    @property
    def container(self) -> ServiceContainer:
        """Return the underlying container."""
        return self._container

    # Mailbox operations ------------------------------------------------------
    async def fetch_page(
        self,
        tenant: str,
        mailbox: Mailbox,
        page: int = 1,
        page_size: int | None = None,
    ) -> MailboxPage:
        """Return one page of ``mailbox``, newest first."""
        reader: MailboxReader = self._container.resolve("reader")
        return await asyncio.to_thread(reader.fetch_page, tenant, mailbox, page, page_size)

    async def fetch_updates(
        self, tenant: str, mailbox: Mailbox, since_uid: int
    ) -> MailboxUpdates:
        """Return messages that arrived after ``since_uid``."""
        reader: MailboxReader = self._container.resolve("reader")
        return await asyncio.to_thread(reader.fetch_updates, tenant, mailbox, since_uid)

    async def fetch_detail(self, tenant: str, mailbox: Mailbox, uid: Uid) -> MessageDetail:
        """Return the full view of one message."""
        reader: MessageDetailReader = self._container.resolve("detail_reader")
        return await asyncio.to_thread(reader.fetch_detail, tenant, mailbox, uid)

    async def fetch_attachment(
        self, tenant: str, mailbox: Mailbox, uid: Uid, attachment_id: str
    ) -> AttachmentContent:
        """Return one attachment's bytes."""
        reader: MessageDetailReader = self._container.resolve("detail_reader")
        return await asyncio.to_thread(
            reader.fetch_attachment, tenant, mailbox, uid, attachment_id
        )

    async def move_message(
        self, tenant: str, mailbox: Mailbox, uid: Uid, target: Mailbox
    ) -> None:
        """Move a message between logical mailboxes."""
        reader: MailboxReader = self._container.resolve("reader")
        await asyncio.to_thread(reader.move_message, tenant, mailbox, uid, target)

    async def send_message(self, tenant: str, request: ComposeRequest) -> SentAppendResult:
        """Deliver a message and reconcile it into Sent."""
        delivery: OutboundDelivery = self._container.resolve("delivery")
        return await asyncio.to_thread(delivery.send, tenant, request)

    # Connection checks -------------------------------------------------------
    async def test_imap_connection(self, settings: ConnectionSettings) -> None:
        """Log in and open the inbox with ``settings``."""
        validate_connection(settings, "IMAP")
        await asyncio.to_thread(self._check_imap, settings)

    async def test_smtp_connection(self, settings: ConnectionSettings) -> None:
        """Log in and issue ``NOOP`` with ``settings``."""
        validate_connection(settings, "SMTP")
        await asyncio.to_thread(self._check_smtp, settings)

    # Tracking ----------------------------------------------------------------
    async def record_open(self, token: str, user_agent: str | None = None) -> bool:
        """Count an open for ``token``."""
        tracker: EmailTracker = self._container.resolve("tracker")
        return await asyncio.to_thread(tracker.record_open, token, user_agent)

    async def record_click(self, token: str, user_agent: str | None = None) -> str | None:
        """Count a click for ``token`` and return its destination."""
        tracker: EmailTracker = self._container.resolve("tracker")
        return await asyncio.to_thread(tracker.record_click, token, user_agent)

    def close(self) -> None:
        """Release resources held by resolved collaborators."""
        self._container.close()

    # Internal helpers --------------------------------------------------------
    def _check_imap(self, settings: ConnectionSettings) -> None:
        open_mailbox: MailboxSessionFactory = self._container.resolve("open_mailbox")
        try:
            with open_mailbox(settings) as session:
                session.select_folder(INBOX_PATH, readonly=True)
        except Exception as exc:  # pylint: disable=broad-except
            raise format_error("IMAP connection test failed", exc) from exc
        LOGGER.info("IMAP connection test succeeded for %s", settings.host)

    def _check_smtp(self, settings: ConnectionSettings) -> None:
        open_submission: SubmissionSessionFactory = self._container.resolve(
            "open_submission"
        )
        try:
            with open_submission(settings) as session:
                session.noop()
        except Exception as exc:  # pylint: disable=broad-except
            raise format_error("SMTP connection test failed", exc) from exc
        LOGGER.info("SMTP connection test succeeded for %s", settings.host)


__all__ = [
    "MessagingService",
    "build_container",
    "ensure_non_empty",
    "ensure_port",
    "validate_connection",
]
