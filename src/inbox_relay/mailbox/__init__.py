"""Folder discovery, logical mailbox resolution, and session handling."""

from .access import MailboxAccess, TenantSession
from .resolver import FolderCache, FolderCacheRegistry, MailboxResolver
from .scoring import normalize_folder_name, rank_candidates

__all__ = [
    "FolderCache",
    "FolderCacheRegistry",
    "MailboxAccess",
    "MailboxResolver",
    "TenantSession",
    "normalize_folder_name",
    "rank_candidates",
]
