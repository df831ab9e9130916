"""SQLite-backed store for the auto-reply log and engagement tracking."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, to_utc
from ..core.models import (
    AutoReplyLogEntry,
    RecipientKind,
    ReplyType,
    TrackingDetail,
    TrackingLinkDetail,
    TrackingRecipientDetail,
    TrackingStats,
    Uid,
)

LOGGER = logging.getLogger(__name__)

OPEN_EVENT = "open"
CLICK_EVENT = "click"


@dataclass(slots=True, frozen=True)
class TrackedRecipientRecord:
    """Recipient row to create, with one click token per tracked link."""

    address: str
    name: str | None
    kind: RecipientKind
    open_token: str
    link_tokens: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class TrackedEmailRecord:
    """Everything recorded for one outbound message at send time."""

    tenant: str
    message_id: str
    subject: str | None
    sent_at: datetime
    tracking_enabled: bool
    recipients: tuple[TrackedRecipientRecord, ...]
    links: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ClickResult:
    """Outcome of resolving a click token."""

    url: str
    counted: bool


def _timestamp(value: datetime) -> str:
    """Serialise to a fixed-width UTC form so text comparison follows time order."""
    return to_utc(value).isoformat(timespec="microseconds")


def _read_timestamp(value: str | None) -> datetime | None:
    return parse_datetime(value, assume_utc=True)


def _read_required_timestamp(value: str) -> datetime:
    """Read a NOT NULL timestamp column."""
    return to_utc(datetime.fromisoformat(value))


class SqliteMessagingStore:
    """Persist auto-reply history and tracking counters using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Initialise the store and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        # Operations run on worker threads; one connection is shared.
        self._lock = threading.Lock()
        self._enable_foreign_keys()
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMessagingStore:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # AutoReplyLogStore API ---------------------------------------------------
    def create(self, entry: AutoReplyLogEntry) -> None:
        """Insert a new auto-reply log entry."""
        LOGGER.debug(
            "Recording %s auto-reply to %s for %s",
            entry.reply_type,
            entry.sender_email,
            entry.tenant,
        )
        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO auto_reply_log (
                    tenant,
                    sender_email,
                    reply_type,
                    sent_at,
                    original_message_id,
                    original_uid
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.tenant,
                    entry.sender_email,
                    entry.reply_type.value,
                    _timestamp(entry.sent_at),
                    entry.original_message_id,
                    entry.original_uid,
                ),
            )

    def find_recent(
        self, tenant: str, sender_emails: Sequence[str], since: datetime
    ) -> list[AutoReplyLogEntry]:
        """Return entries for ``sender_emails`` sent at or after ``since``."""
        if not sender_emails:
            return []
        placeholders = ", ".join("?" for _ in sender_emails)
        with self._lock:
            cur = self._connection.execute(
                f"""
                SELECT tenant, sender_email, reply_type, sent_at,
                       original_message_id, original_uid
                FROM auto_reply_log
                WHERE tenant = ?
                  AND sender_email IN ({placeholders})
                  AND sent_at >= ?
                ORDER BY sent_at DESC
                """,
                (tenant, *sender_emails, _timestamp(since)),
            )
            rows = cur.fetchall()
        entries = []
        for row in rows:
            sent_at = _read_required_timestamp(row["sent_at"])
            entries.append(
                AutoReplyLogEntry(
                    tenant=row["tenant"],
                    sender_email=row["sender_email"],
                    reply_type=ReplyType(row["reply_type"]),
                    sent_at=sent_at,
                    original_message_id=row["original_message_id"],
                    original_uid=(
                        Uid(row["original_uid"])
                        if row["original_uid"] is not None
                        else None
                    ),
                )
            )
        return entries

    # Tracking API ------------------------------------------------------------
    def create_tracked_email(self, record: TrackedEmailRecord) -> None:
        """Insert the email, its recipients, links and per-recipient link tokens."""
        with self._lock, self._connection:
            cur = self._connection.execute(
                """
                INSERT INTO tracked_emails (
                    tenant, message_id, subject, sent_at, tracking_enabled
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.tenant,
                    record.message_id,
                    record.subject,
                    _timestamp(record.sent_at),
                    int(record.tracking_enabled),
                ),
            )
            email_id = cur.lastrowid
            link_ids = []
            for position, url in enumerate(record.links):
                cur = self._connection.execute(
                    "INSERT INTO tracked_links (email_id, url, position) VALUES (?, ?, ?)",
                    (email_id, url, position),
                )
                link_ids.append(cur.lastrowid)
            for recipient in record.recipients:
                cur = self._connection.execute(
                    """
                    INSERT INTO tracked_recipients (
                        email_id, address, name, kind, open_token
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        email_id,
                        recipient.address,
                        recipient.name,
                        recipient.kind.value,
                        recipient.open_token,
                    ),
                )
                recipient_id = cur.lastrowid
                for link_id, token in zip(link_ids, recipient.link_tokens, strict=True):
                    self._connection.execute(
                        """
                        INSERT INTO tracked_link_recipients (
                            link_id, recipient_id, token
                        ) VALUES (?, ?, ?)
                        """,
                        (link_id, recipient_id, token),
                    )
        LOGGER.debug(
            "Recorded tracked email %s with %d recipients and %d links",
            record.message_id,
            len(record.recipients),
            len(record.links),
        )

    def tracking_stats(
        self, tenant: str, message_ids: Sequence[str]
    ) -> dict[str, TrackingStats]:
        """Return aggregate counters keyed by Message-ID."""
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        with self._lock:
            cur = self._connection.execute(
                f"""
                SELECT e.message_id AS message_id,
                       e.tracking_enabled AS tracking_enabled,
                       COALESCE(SUM(r.open_count), 0) AS total_opens,
                       COALESCE(SUM(r.click_count), 0) AS total_clicks
                FROM tracked_emails e
                LEFT JOIN tracked_recipients r ON r.email_id = e.id
                WHERE e.tenant = ? AND e.message_id IN ({placeholders})
                GROUP BY e.id
                """,
                (tenant, *message_ids),
            )
            rows = cur.fetchall()
        return {
            row["message_id"]: TrackingStats(
                enabled=bool(row["tracking_enabled"]),
                total_opens=row["total_opens"],
                total_clicks=row["total_clicks"],
            )
            for row in rows
        }

    def tracking_detail(self, tenant: str, message_id: str) -> TrackingDetail | None:
        """Return the per-recipient and per-link report for one message."""
        with self._lock:
            email = self._connection.execute(
                """
                SELECT id, message_id, subject, sent_at, tracking_enabled
                FROM tracked_emails
                WHERE tenant = ? AND message_id = ?
                """,
                (tenant, message_id),
            ).fetchone()
            if email is None:
                return None
            recipient_rows = self._connection.execute(
                """
                SELECT address, name, kind, open_count, first_opened_at,
                       last_opened_at, click_count, last_clicked_at
                FROM tracked_recipients
                WHERE email_id = ?
                ORDER BY id
                """,
                (email["id"],),
            ).fetchall()
            link_rows = self._connection.execute(
                """
                SELECT l.url AS url,
                       l.position AS position,
                       COALESCE(SUM(lr.click_count), 0) AS total_clicks
                FROM tracked_links l
                LEFT JOIN tracked_link_recipients lr ON lr.link_id = l.id
                WHERE l.email_id = ?
                GROUP BY l.id
                ORDER BY l.position
                """,
                (email["id"],),
            ).fetchall()

        recipients = tuple(
            TrackingRecipientDetail(
                address=row["address"],
                name=row["name"],
                kind=RecipientKind(row["kind"]),
                open_count=row["open_count"],
                first_opened_at=_read_timestamp(row["first_opened_at"]),
                last_opened_at=_read_timestamp(row["last_opened_at"]),
                click_count=row["click_count"],
                last_clicked_at=_read_timestamp(row["last_clicked_at"]),
            )
            for row in recipient_rows
        )
        links = tuple(
            TrackingLinkDetail(
                url=row["url"],
                position=row["position"],
                total_clicks=row["total_clicks"],
            )
            for row in link_rows
        )
        sent_at = _read_required_timestamp(email["sent_at"])
        return TrackingDetail(
            message_id=email["message_id"],
            tracking_enabled=bool(email["tracking_enabled"]),
            sent_at=sent_at,
            subject=email["subject"],
            total_opens=sum(item.open_count for item in recipients),
            total_clicks=sum(item.click_count for item in recipients),
            recipients=recipients,
            links=links,
        )

    def record_open(
        self,
        token: str,
        user_agent: str | None,
        occurred_at: datetime,
        dedupe_window: timedelta,
    ) -> bool | None:
        """Count an open; ``None`` for unknown tokens, ``False`` when deduplicated."""
        with self._lock:
            recipient = self._connection.execute(
                "SELECT id, email_id, first_opened_at FROM tracked_recipients "
                "WHERE open_token = ?",
                (token,),
            ).fetchone()
            if recipient is None:
                return None
            previous = self._connection.execute(
                """
                SELECT user_agent, occurred_at FROM tracking_events
                WHERE recipient_id = ? AND kind = ?
                ORDER BY occurred_at DESC
                LIMIT 1
                """,
                (recipient["id"], OPEN_EVENT),
            ).fetchone()
            if self._is_duplicate(previous, user_agent, occurred_at, dedupe_window):
                return False

            stamp = _timestamp(occurred_at)
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE tracked_recipients
                    SET open_count = open_count + 1,
                        first_opened_at = COALESCE(first_opened_at, ?),
                        last_opened_at = ?
                    WHERE id = ?
                    """,
                    (stamp, stamp, recipient["id"]),
                )
                self._connection.execute(
                    """
                    INSERT INTO tracking_events (
                        email_id, recipient_id, kind, user_agent, occurred_at
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (recipient["email_id"], recipient["id"], OPEN_EVENT, user_agent, stamp),
                )
        return True

    def record_click(
        self,
        token: str,
        user_agent: str | None,
        occurred_at: datetime,
        dedupe_window: timedelta,
    ) -> ClickResult | None:
        """Count a click and return the original URL; ``None`` for unknown tokens."""
        with self._lock:
            target = self._connection.execute(
                """
                SELECT lr.id AS id,
                       lr.recipient_id AS recipient_id,
                       l.email_id AS email_id,
                       l.url AS url
                FROM tracked_link_recipients lr
                JOIN tracked_links l ON l.id = lr.link_id
                WHERE lr.token = ?
                """,
                (token,),
            ).fetchone()
            if target is None:
                return None
            previous = self._connection.execute(
                """
                SELECT user_agent, occurred_at FROM tracking_events
                WHERE link_recipient_id = ? AND kind = ?
                ORDER BY occurred_at DESC
                LIMIT 1
                """,
                (target["id"], CLICK_EVENT),
            ).fetchone()
            if self._is_duplicate(previous, user_agent, occurred_at, dedupe_window):
                return ClickResult(url=target["url"], counted=False)

            stamp = _timestamp(occurred_at)
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE tracked_link_recipients
                    SET click_count = click_count + 1,
                        first_clicked_at = COALESCE(first_clicked_at, ?),
                        last_clicked_at = ?
                    WHERE id = ?
                    """,
                    (stamp, stamp, target["id"]),
                )
                self._connection.execute(
                    """
                    UPDATE tracked_recipients
                    SET click_count = click_count + 1, last_clicked_at = ?
                    WHERE id = ?
                    """,
                    (stamp, target["recipient_id"]),
                )
                self._connection.execute(
                    """
                    INSERT INTO tracking_events (
                        email_id, recipient_id, link_recipient_id, kind,
                        user_agent, occurred_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        target["email_id"],
                        target["recipient_id"],
                        target["id"],
                        CLICK_EVENT,
                        user_agent,
                        stamp,
                    ),
                )
        return ClickResult(url=target["url"], counted=True)

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    @staticmethod
    def _is_duplicate(
        previous: sqlite3.Row | None,
        user_agent: str | None,
        occurred_at: datetime,
        window: timedelta,
    ) -> bool:
        if previous is None:
            return False
        if (previous["user_agent"] or "") != (user_agent or ""):
            return False
        last_seen = _read_required_timestamp(previous["occurred_at"])
        elapsed = to_utc(occurred_at) - last_seen
        return timedelta(0) <= elapsed < window

    def _enable_foreign_keys(self) -> None:
        with self._connection:
            self._connection.execute("PRAGMA foreign_keys = ON")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


__all__ = [
    "ClickResult",
    "SqliteMessagingStore",
    "TrackedEmailRecord",
    "TrackedRecipientRecord",
]
