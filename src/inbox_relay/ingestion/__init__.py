"""Mailbox reading components."""

from .detail import MessageDetailReader
from .fetcher import MailboxReader, page_window
from .parser import MessageParser, build_summary, merge_participants
from .sanitizer import EmailHtmlSanitizer

__all__ = [
    "EmailHtmlSanitizer",
    "MailboxReader",
    "MessageDetailReader",
    "MessageParser",
    "build_summary",
    "merge_participants",
    "page_window",
]
