"""Error taxonomy shared by transports, engines, and outer surfaces."""

from __future__ import annotations

from typing import TypeVar

E = TypeVar("E", bound="MessagingError")


class MessagingError(RuntimeError):
    """Base class for every failure surfaced by inbox-relay."""

    def with_prefix(self: E, prefix: str) -> E:
        """Return a copy of this error whose message names the failed operation.

        The error class is preserved so callers can still branch on the
        category, and the original error is chained as ``__cause__``.
        """
        wrapped = type(self)(f"{prefix}: {self}")
        wrapped.__cause__ = self
        return wrapped


class ConfigurationError(MessagingError):
    """Mail retrieval or submission is not configured for the tenant."""


class AuthenticationError(MessagingError):
    """The remote server rejected the supplied credentials."""


class ConnectivityError(MessagingError):
    """The remote server could not be reached or timed out."""


class NotFoundError(MessagingError):
    """A folder, message, or attachment does not exist."""


class FolderNotFoundError(NotFoundError):
    """No candidate folder could be opened for a logical mailbox."""

    @classmethod
    def for_mailbox(cls, mailbox: str) -> FolderNotFoundError:
        """Build the error naming the logical mailbox that failed to resolve."""
        return cls(f"Folder not found for mailbox '{mailbox}'")


class MessageNotFoundError(NotFoundError):
    """The requested UID is absent from the resolved folder."""


class AttachmentNotFoundError(NotFoundError):
    """The requested attachment identifier is absent from the message."""


class DeliveryError(MessagingError):
    """Submitting the message to at least one recipient failed."""


class RecipientError(DeliveryError):
    """No parseable recipient was supplied."""


class ReconciliationError(MessagingError):
    """Appending or locating a delivered message in Sent failed."""


def format_error(prefix: str, error: BaseException) -> MessagingError:
    """Wrap ``error`` with a human readable prefix, keeping its category."""
    if isinstance(error, MessagingError):
        return error.with_prefix(prefix)
    message = str(error) or error.__class__.__name__
    wrapped = MessagingError(f"{prefix}: {message}")
    wrapped.__cause__ = error
    return wrapped


__all__ = [
    "AttachmentNotFoundError",
    "AuthenticationError",
    "ConfigurationError",
    "ConnectivityError",
    "DeliveryError",
    "FolderNotFoundError",
    "MessageNotFoundError",
    "MessagingError",
    "NotFoundError",
    "RecipientError",
    "ReconciliationError",
    "format_error",
]
