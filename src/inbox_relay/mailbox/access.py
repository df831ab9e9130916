"""Per-operation IMAP sessions bound to a tenant and its folder cache."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from ..core.config import TenantSettings
from ..core.errors import ConfigurationError
from ..core.interfaces import CredentialStore, MailboxSession, MailboxSessionFactory
from .resolver import FolderCacheRegistry, MailboxResolver

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TenantSession:
    """An open session together with the tenant context it serves."""

    tenant: str
    settings: TenantSettings
    session: MailboxSession
    resolver: MailboxResolver


class MailboxAccess:
    """Open one authenticated session per operation; never pooled."""

    def __init__(
        self,
        credentials: CredentialStore,
        open_session: MailboxSessionFactory,
        caches: FolderCacheRegistry | None = None,
    ) -> None:
        """Store collaborators used to open sessions."""
        self._credentials = credentials
        self._open_session = open_session
        self._caches = caches or FolderCacheRegistry()

    def settings_for(self, tenant: str) -> TenantSettings:
        """Return the tenant's settings from the credential store."""
        return self._credentials.get_credentials(tenant)

    @contextmanager
    def session(
        self, tenant: str, settings: TenantSettings | None = None
    ) -> Iterator[TenantSession]:
        """Yield a connected session; it is closed when the block exits.

        Raises:
            ConfigurationError: When the tenant has no IMAP endpoint
        """
        settings = settings if settings is not None else self.settings_for(tenant)
        if settings.imap is None:
            raise ConfigurationError(
                f"IMAP server is not configured for tenant '{tenant}'"
            )
        LOGGER.debug("Opening IMAP session for tenant %s", tenant)
        with self._open_session(settings.imap) as session:
            yield TenantSession(
                tenant=tenant,
                settings=settings,
                session=session,
                resolver=MailboxResolver(session, self._caches.for_tenant(tenant)),
            )


__all__ = ["MailboxAccess", "TenantSession"]
