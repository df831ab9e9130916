"""Resolve logical mailboxes to server folders, with a per-tenant cache."""

from __future__ import annotations

import logging
import threading
from collections import Counter

from ..core.errors import (
    AuthenticationError,
    ConnectivityError,
    FolderNotFoundError,
    MessagingError,
)
from ..core.interfaces import MailboxSession
from ..core.models import FolderInfo, FolderStatus, Mailbox
from .scoring import rank_candidates

LOGGER = logging.getLogger(__name__)

_HIERARCHY_SEPARATORS = ("/", ".")


class FolderCache:
    """Last successfully opened folder path per logical mailbox for one tenant."""

    def __init__(self) -> None:
        """Initialise an empty cache."""
        self._paths: dict[Mailbox, str] = {}
        self._lock = threading.Lock()

    def get(self, mailbox: Mailbox) -> str | None:
        """Return the cached path for ``mailbox``."""
        with self._lock:
            return self._paths.get(mailbox)

    def remember(self, mailbox: Mailbox, path: str) -> None:
        """Record ``path`` as the resolution of ``mailbox``."""
        with self._lock:
            self._paths[mailbox] = path

    def forget(self, mailbox: Mailbox, path: str) -> None:
        """Drop the entry for ``mailbox`` if it still points at ``path``."""
        with self._lock:
            if self._paths.get(mailbox) == path:
                del self._paths[mailbox]


class FolderCacheRegistry:
    """Hands out one :class:`FolderCache` per tenant."""

    def __init__(self) -> None:
        """Initialise the registry."""
        self._caches: dict[str, FolderCache] = {}
        self._lock = threading.Lock()

    def for_tenant(self, tenant: str) -> FolderCache:
        """Return the tenant's cache, creating it on first use."""
        with self._lock:
            cache = self._caches.get(tenant)
            if cache is None:
                cache = FolderCache()
                self._caches[tenant] = cache
            return cache


def open_variants(path: str, delimiter: str | None) -> list[str]:
    """Return the spellings of ``path`` to try when opening it.

    The raw path comes first, followed by its segments re-joined with the
    server delimiter and the other common hierarchy separator.
    """
    joiners = [delimiter] if delimiter else []
    joiners.extend(sep for sep in _HIERARCHY_SEPARATORS if sep not in joiners)
    variants = [path]
    for separator in _HIERARCHY_SEPARATORS:
        segments = [segment.strip() for segment in path.split(separator)]
        segments = [segment for segment in segments if segment]
        if len(segments) < 2:
            continue
        for joiner in joiners:
            variant = joiner.join(segments)
            if variant not in variants:
                variants.append(variant)
    return variants


class MailboxResolver:
    """Maps a logical mailbox to a folder that opens on this session."""

    def __init__(self, session: MailboxSession, cache: FolderCache) -> None:
        """Bind the resolver to one session and the tenant's cache."""
        self._session = session
        self._cache = cache
        self._folders: list[FolderInfo] | None = None

    def candidates(self, mailbox: Mailbox) -> list[str]:
        """Return candidate folder paths for ``mailbox``, best guess first."""
        folders = [] if mailbox is Mailbox.INBOX else self._list_folders()
        return rank_candidates(mailbox, folders, cached=self._cache.get(mailbox))

    def best_candidate(self, mailbox: Mailbox) -> str:
        """Return the most likely path for ``mailbox`` without opening it."""
        candidates = self.candidates(mailbox)
        if not candidates:
            raise FolderNotFoundError.for_mailbox(mailbox)
        return candidates[0]

    def open(self, mailbox: Mailbox, *, readonly: bool = True) -> FolderStatus:
        """Open the first candidate that the server accepts.

        Raises:
            ConnectivityError: As soon as the connection fails
            AuthenticationError: When opening ``sent`` is rejected for auth reasons
            FolderNotFoundError: When every candidate failed to open
        """
        attempted: set[str] = set()
        for candidate in self.candidates(mailbox):
            for variant in open_variants(candidate, self._delimiter_for(candidate)):
                if variant in attempted:
                    continue
                attempted.add(variant)
                try:
                    status = self._session.select_folder(variant, readonly=readonly)
                except ConnectivityError as exc:
                    self._cache.forget(mailbox, candidate)
                    raise exc.with_prefix("IMAP connection unavailable")
                except MessagingError as exc:
                    self._cache.forget(mailbox, candidate)
                    if mailbox is Mailbox.SENT and isinstance(exc, AuthenticationError):
                        raise
                    LOGGER.warning(
                        "Unable to open folder '%s' for %s: %s", variant, mailbox, exc
                    )
                    continue
                self._cache.remember(mailbox, variant)
                LOGGER.debug("Resolved %s to '%s'", mailbox, variant)
                return status
        raise FolderNotFoundError.for_mailbox(mailbox)

    # Internal helpers ---------------------------------------------------------
    def _list_folders(self) -> list[FolderInfo]:
        if self._folders is None:
            try:
                self._folders = self._session.list_folders()
            except ConnectivityError:
                raise
            except MessagingError as exc:
                LOGGER.warning("Unable to list folders: %s", exc)
                self._folders = []
        return self._folders

    def _delimiter_for(self, path: str) -> str | None:
        folders = self._folders or []
        for folder in folders:
            if folder.path == path and folder.delimiter:
                return folder.delimiter
        delimiters = Counter(folder.delimiter for folder in folders if folder.delimiter)
        if delimiters:
            return delimiters.most_common(1)[0][0]
        return None


__all__ = [
    "FolderCache",
    "FolderCacheRegistry",
    "MailboxResolver",
    "open_variants",
]
