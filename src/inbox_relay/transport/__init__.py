"""Transport adapters for remote mail servers."""

from .imap_client import ImapClient, ImapError
from .smtp_client import SmtpClient, SmtpError

__all__ = ["ImapClient", "ImapError", "SmtpClient", "SmtpError"]
