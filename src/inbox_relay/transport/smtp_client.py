"""SMTP client for submitting messages with error classification."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Sequence
from email.message import EmailMessage

from ..core.config import ConnectionSettings
from ..core.errors import (
    AuthenticationError,
    ConnectivityError,
    DeliveryError,
    MessagingError,
)

LOGGER = logging.getLogger(__name__)


class SmtpError(MessagingError):
    """Base exception for SMTP operations that are not delivery failures."""


class SmtpClient:
    """SMTP client for submitting messages.

    Provides a context manager interface for automatic connection management.
    Uses implicit TLS when ``secure`` is set and opportunistic STARTTLS
    otherwise.

    Example:
        >>> settings = ConnectionSettings(host="smtp.example.com", ...)
        >>> with SmtpClient(settings) as client:
        ...     client.send(message, to_addrs=["user@example.com"])
    """

    def __init__(self, settings: ConnectionSettings, *, timeout: float = 30.0) -> None:
        """Initialize SMTP client with configuration.

        Args:
            settings: Submission endpoint settings
            timeout: Socket timeout in seconds
        """
        self._settings = settings
        self._timeout = timeout
        self._connection: smtplib.SMTP | None = None

    def __enter__(self) -> SmtpClient:
        """Enter context manager, establishing connection."""
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, closing connection."""
        self.disconnect()

    def connect(self) -> None:
        """Establish SMTP connection and authenticate.

        Raises:
            ConnectivityError: If the server cannot be reached
            AuthenticationError: If the credentials are rejected
            SmtpError: For any other protocol failure
        """
        if self._connection is not None:
            return

        host = self._settings.host
        port = self._settings.port
        LOGGER.info("Attempting SMTP connection to %s:%d", host, port)

        try:
            if self._settings.secure:
                LOGGER.debug("Using implicit TLS for SMTP connection")
                connection: smtplib.SMTP = smtplib.SMTP_SSL(
                    host, port, timeout=self._timeout
                )
            else:
                connection = smtplib.SMTP(host, port, timeout=self._timeout)
                connection.ehlo()
                if connection.has_extn("starttls"):
                    LOGGER.debug("Upgrading SMTP connection with STARTTLS")
                    connection.starttls()
                    connection.ehlo()
            self._connection = connection

            LOGGER.debug("Authenticating as %s", self._settings.user)
            connection.login(
                self._settings.user, self._settings.password.get_secret_value()
            )
            LOGGER.info("Connected to SMTP server: %s", host)

        except smtplib.SMTPAuthenticationError as exc:
            LOGGER.error("SMTP authentication failed: %s", exc)
            self.disconnect()
            raise AuthenticationError(f"SMTP authentication failed: {exc}") from exc
        except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as exc:
            LOGGER.error("SMTP connection failed: %s", exc)
            self._connection = None
            raise ConnectivityError(f"Failed to connect to SMTP server: {exc}") from exc
        except smtplib.SMTPException as exc:
            LOGGER.error("SMTP error: %s", exc)
            self.disconnect()
            raise SmtpError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            LOGGER.error("Network error connecting to SMTP server: %s", exc)
            self._connection = None
            raise ConnectivityError(f"Network error: {exc}") from exc

    def disconnect(self) -> None:
        """Close SMTP connection gracefully."""
        if self._connection:
            try:
                self._connection.quit()
                LOGGER.debug("SMTP connection closed")
            except (smtplib.SMTPException, OSError) as exc:
                LOGGER.warning("Error closing SMTP connection: %s", exc)
            finally:
                self._connection = None

    def send(self, message: EmailMessage, *, to_addrs: Sequence[str]) -> None:
        """Submit a message to the given envelope recipients.

        Args:
            message: Fully composed message; ``Bcc`` headers are not transmitted
            to_addrs: Envelope recipients for this submission

        Raises:
            DeliveryError: If the server refuses the sender, a recipient or the data
            ConnectivityError: If the connection drops mid-transaction
        """
        if not self._connection:
            raise SmtpError("Not connected to SMTP server")

        LOGGER.info("Submitting '%s' to %s", message.get("Subject", ""), list(to_addrs))

        try:
            refused = self._connection.send_message(message, to_addrs=list(to_addrs))
        except smtplib.SMTPRecipientsRefused as exc:
            LOGGER.error("All recipients refused: %s", exc.recipients)
            raise DeliveryError(f"All recipients refused: {exc.recipients}") from exc
        except smtplib.SMTPSenderRefused as exc:
            LOGGER.error("Sender refused: %s", exc)
            raise DeliveryError(f"Sender refused: {exc}") from exc
        except smtplib.SMTPDataError as exc:
            LOGGER.error("SMTP data error: %s", exc)
            raise DeliveryError(f"SMTP data error: {exc}") from exc
        except smtplib.SMTPServerDisconnected as exc:
            LOGGER.error("SMTP server disconnected: %s", exc)
            raise ConnectivityError(f"SMTP server disconnected: {exc}") from exc
        except smtplib.SMTPException as exc:
            LOGGER.error("Failed to send email: %s", exc)
            raise DeliveryError(f"Failed to send email: {exc}") from exc
        except OSError as exc:
            LOGGER.error("Network error while sending: %s", exc)
            raise ConnectivityError(f"Network error: {exc}") from exc

        if refused:
            LOGGER.warning("Some recipients were refused: %s", refused)
            raise DeliveryError(f"Some recipients were refused: {refused}")

    def noop(self) -> None:
        """Verify the session with a NOOP round trip."""
        if not self._connection:
            raise SmtpError("Not connected to SMTP server")
        try:
            code, response = self._connection.noop()
        except (smtplib.SMTPServerDisconnected, OSError) as exc:
            raise ConnectivityError(f"SMTP server disconnected: {exc}") from exc
        if code != 250:
            raise SmtpError(
                f"SMTP NOOP rejected ({code}): "
                f"{response.decode('utf-8', errors='replace')}"
            )


__all__ = ["SmtpClient", "SmtpError"]
