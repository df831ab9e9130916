"""IMAP transport adapter providing folder and message access."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from types import TracebackType
from typing import Any, TypeVar

from imapclient import IMAPClient
from imapclient.exceptions import (
    IMAPClientAbortError,
    IMAPClientError,
    IMAPClientReadOnlyError,
)

from ..core.config import ConnectionSettings
from ..core.errors import AuthenticationError, ConnectivityError, MessagingError
from ..core.models import (
    AppendResult,
    Envelope,
    EnvelopeAddress,
    FetchedMessage,
    FolderInfo,
    FolderStatus,
    Uid,
)

LOGGER = logging.getLogger(__name__)

SUMMARY_ITEMS = ["FLAGS", "INTERNALDATE", "ENVELOPE", "BODYSTRUCTURE"]
SOURCE_ITEMS = [*SUMMARY_ITEMS, "BODY.PEEK[]"]
HEADER_ITEMS = ["BODY.PEEK[HEADER]"]

_APPENDUID_RE = re.compile(rb"APPENDUID \d+ (\d+)", re.IGNORECASE)

T = TypeVar("T")


class ImapError(MessagingError):
    """Wrap low level IMAP errors with additional context."""


class ImapClient:
    """Thin wrapper around ``imapclient`` offering typed folder and fetch helpers."""

    def __init__(self, settings: ConnectionSettings, *, timeout: float = 30.0) -> None:
        """Initialise the client with connection settings."""
        self._settings = settings
        self._timeout = timeout
        self._client: IMAPClient | None = None
        self._selected: str | None = None
        self._readonly = True

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapClient:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Establish the IMAP connection and authenticate."""
        if self._client is not None:
            return

        host = self._settings.host
        port = self._settings.port
        LOGGER.debug(
            "Connecting to IMAP host %s:%s (ssl=%s)", host, port, self._settings.secure
        )
        try:
            client = IMAPClient(
                host, port=port, ssl=self._settings.secure, timeout=self._timeout
            )
        except (OSError, IMAPClientError) as exc:
            raise ConnectivityError(
                f"Unable to reach IMAP server {host}:{port}: {exc}"
            ) from exc
        # Keep the server's offset on INTERNALDATE instead of local naive times.
        client.normalise_times = False

        try:
            LOGGER.debug("Authenticating as %s", self._settings.user)
            client.login(self._settings.user, self._settings.password.get_secret_value())
        except (OSError, IMAPClientAbortError) as exc:
            raise ConnectivityError(f"IMAP connection lost during login: {exc}") from exc
        except IMAPClientError as exc:
            _safe_logout(client)
            raise AuthenticationError(
                f"IMAP authentication failed: {_describe(exc)}"
            ) from exc
        self._client = client

    def list_folders(self) -> list[FolderInfo]:
        """Return every folder the server reports, without duplicates."""
        entries = self._run("list folders", lambda client: client.list_folders())
        folders: dict[str, FolderInfo] = {}
        for flags, delimiter, name in entries:
            path = _text(name) or ""
            if path and path not in folders:
                folders[path] = FolderInfo(
                    path=path,
                    delimiter=_text(delimiter),
                    flags=tuple(_text(flag) or "" for flag in flags),
                )
        LOGGER.debug("Server reported %d folders", len(folders))
        return list(folders.values())

    def select_folder(self, path: str, *, readonly: bool = True) -> FolderStatus:
        """Open ``path`` and report its message count and next UID."""
        response = self._run(
            f"select folder '{path}'",
            lambda client: client.select_folder(path, readonly=readonly),
        )
        self._selected = path
        self._readonly = readonly
        uid_next = response.get(b"UIDNEXT")
        status = FolderStatus(
            path=path,
            exists=int(response.get(b"EXISTS") or 0),
            uid_next=int(uid_next) if uid_next is not None else None,
        )
        LOGGER.debug(
            "Selected '%s' (exists=%s, uidnext=%s)", path, status.exists, status.uid_next
        )
        return status

    def fetch_sequence_range(self, start: int, end: int) -> list[FetchedMessage]:
        """Fetch summaries for sequence numbers ``start..end`` inclusive."""
        return self._fetch(
            f"fetch messages {start}:{end}",
            f"{start}:{end}",
            [*SUMMARY_ITEMS, "UID"],
            by_uid=False,
        )

    def fetch_uid_range(self, since_uid: int) -> list[FetchedMessage]:
        """Fetch summaries for every message whose UID exceeds ``since_uid``."""
        messages = self._fetch(
            f"fetch messages after UID {since_uid}", f"{since_uid + 1}:*", SUMMARY_ITEMS
        )
        # ``n:*`` matches the highest UID even when it is below ``n``.
        return [item for item in messages if item.uid > since_uid]

    def fetch_by_uid(self, uid: Uid, *, body: bool = False) -> FetchedMessage | None:
        """Fetch one message by UID, optionally with its full source."""
        items = SOURCE_ITEMS if body else SUMMARY_ITEMS
        messages = self._fetch(f"fetch message UID {uid}", [uid], items)
        return next((item for item in messages if item.uid == uid), None)

    def fetch_by_sequence(self, sequence: int) -> FetchedMessage | None:
        """Fetch one message summary by sequence number."""
        messages = self._fetch(
            f"fetch message #{sequence}",
            [sequence],
            [*SUMMARY_ITEMS, "UID"],
            by_uid=False,
        )
        return next((item for item in messages if item.sequence == sequence), None)

    def fetch_headers(self, uid: Uid) -> bytes | None:
        """Fetch the raw header block of one message."""
        response = self._run(
            f"fetch headers of UID {uid}",
            lambda client: client.fetch([uid], HEADER_ITEMS),
        )
        header = (response.get(uid) or {}).get(b"BODY[HEADER]")
        return header if isinstance(header, bytes) else None

    def append(
        self, path: str, raw: bytes, *, flags: Sequence[str], when: datetime
    ) -> AppendResult:
        """Store ``raw`` in ``path`` and report the identifiers assigned to it."""
        response = self._run(
            f"append to '{path}'",
            lambda client: client.append(path, raw, flags=tuple(flags), msg_time=when),
        )
        uid: Uid | None = None
        match = _APPENDUID_RE.search(response if isinstance(response, bytes) else b"")
        if match:
            uid = Uid(int(match.group(1)))
        sequence = None
        if self._selected == path:
            # Reselecting reports the new EXISTS count, which is the new message.
            sequence = self.select_folder(path, readonly=self._readonly).exists or None
        LOGGER.debug("Appended message to '%s' (uid=%s, seq=%s)", path, uid, sequence)
        return AppendResult(uid=uid, sequence=sequence)

    def search_header(self, name: str, value: str) -> list[Uid]:
        """Return UIDs in the open folder whose header ``name`` contains ``value``."""
        found = self._run(
            f"search {name} header",
            lambda client: client.search(["HEADER", name, value]),
        )
        return [Uid(int(uid)) for uid in found]

    def message_count(self, path: str) -> int | None:
        """Return the number of messages in ``path`` via STATUS."""
        status = self._run(
            f"status of '{path}'",
            lambda client: client.folder_status(path, [b"MESSAGES"]),
        )
        count = status.get(b"MESSAGES")
        return int(count) if count is not None else None

    def move(self, uid: Uid, destination: str) -> None:
        """Move a message by UID from the open folder using the MOVE command."""
        LOGGER.debug("Moving UID %s to '%s'", uid, destination)
        self._run(
            f"move UID {uid} to '{destination}'",
            lambda client: client.move([uid], destination),
        )

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._client is None:
            return
        try:
            if self._selected is not None:
                LOGGER.debug("Closing IMAP folder '%s'", self._selected)
                self._client.close_folder()
        except (IMAPClientError, OSError):  # pragma: no cover - server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            _safe_logout(self._client)
            self._client = None
            self._selected = None

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> IMAPClient:
        if self._client is None:
            raise ImapError("IMAP connection has not been established")
        return self._client

    def _run(self, action: str, command: Callable[[IMAPClient], T]) -> T:
        """Run ``command`` and translate failures into the error taxonomy."""
        client = self._require_connection()
        try:
            return command(client)
        except IMAPClientReadOnlyError as exc:
            raise ImapError(f"Failed to {action}: folder is read-only") from exc
        except (OSError, IMAPClientAbortError) as exc:
            raise ConnectivityError(f"IMAP connection lost ({action}): {exc}") from exc
        except IMAPClientError as exc:
            raise ImapError(f"Failed to {action}: {_describe(exc)}") from exc

    def _fetch(
        self,
        action: str,
        messages: str | Sequence[int],
        items: Sequence[str],
        *,
        by_uid: bool = True,
    ) -> list[FetchedMessage]:
        def command(client: IMAPClient) -> dict[int, dict[bytes, Any]]:
            client.use_uid = by_uid
            try:
                return client.fetch(messages, list(items))
            finally:
                client.use_uid = True

        response = self._run(action, command)
        fetched = []
        for key, data in response.items():
            message = _to_fetched(key, data, by_uid=by_uid)
            if message is not None:
                fetched.append(message)
        return fetched


def _to_fetched(
    key: int, data: Mapping[bytes, Any], *, by_uid: bool
) -> FetchedMessage | None:
    uid = key if by_uid else data.get(b"UID")
    # Unsolicited flag updates carry no UID.
    if uid is None:
        return None
    body = data.get(b"BODY[]")
    return FetchedMessage(
        sequence=int(data.get(b"SEQ") or (0 if by_uid else key)),
        uid=Uid(int(uid)),
        flags=frozenset(_text(flag) or "" for flag in data.get(b"FLAGS") or ()),
        internal_date=data.get(b"INTERNALDATE"),
        envelope=_to_envelope(data.get(b"ENVELOPE")),
        has_attachments=_has_attachments(data.get(b"BODYSTRUCTURE")),
        body=body if isinstance(body, bytes) else None,
    )


def _to_envelope(raw: Any) -> Envelope | None:
    if raw is None:
        return None
    return Envelope(
        date=raw.date,
        subject=decode_header_value(raw.subject),
        from_=_to_addresses(raw.from_),
        reply_to=_to_addresses(raw.reply_to),
        to=_to_addresses(raw.to),
        cc=_to_addresses(raw.cc),
        bcc=_to_addresses(raw.bcc),
        in_reply_to=_text(raw.in_reply_to),
        message_id=_text(raw.message_id),
    )


def _to_addresses(raw: Sequence[Any] | None) -> tuple[EnvelopeAddress, ...]:
    addresses = []
    for entry in raw or ():
        # Group start and end markers carry no host.
        if entry.host is None:
            continue
        addresses.append(
            EnvelopeAddress(
                name=decode_header_value(entry.name),
                mailbox=_text(entry.mailbox),
                host=_text(entry.host),
            )
        )
    return tuple(addresses)


def _has_attachments(structure: Any) -> bool:
    """Return ``True`` when any BODYSTRUCTURE part has an attachment disposition."""
    if not isinstance(structure, (list, tuple)):
        return False
    if (
        structure
        and isinstance(structure[0], bytes)
        and structure[0].lower() == b"attachment"
    ):
        return True
    return any(_has_attachments(item) for item in structure)


def decode_header_value(value: Any) -> str | None:
    """Decode RFC 2047 encoded words found in envelope strings."""
    text = _text(value)
    if text is None:
        return None
    try:
        return str(make_header(decode_header(text)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return text


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _describe(exc: BaseException) -> str:
    message = exc.args[0] if exc.args else exc
    if isinstance(message, bytes):
        return message.decode("utf-8", errors="replace")
    return str(message)


def _safe_logout(client: IMAPClient) -> None:
    try:
        client.logout()
    except (IMAPClientError, OSError):  # pragma: no cover
        LOGGER.debug("IMAP logout raised; suppressing during shutdown")


__all__ = [
    "HEADER_ITEMS",
    "ImapClient",
    "ImapError",
    "SOURCE_ITEMS",
    "SUMMARY_ITEMS",
    "decode_header_value",
]
