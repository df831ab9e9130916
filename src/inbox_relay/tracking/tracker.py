"""Open-pixel and link-rewrite tracking for outbound messages."""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from bs4 import BeautifulSoup

from ..core.config import TrackingSettings
from ..core.datetime_utils import utcnow
from ..core.errors import RecipientError
from ..core.models import PreparedRecipient, Recipient, TrackingDetail, TrackingStats
from ..storage.sqlite import SqliteMessagingStore, TrackedEmailRecord, TrackedRecipientRecord

LOGGER = logging.getLogger(__name__)

OPEN_DEDUPE_WINDOW = timedelta(minutes=2)
CLICK_DEDUPE_WINDOW = timedelta(seconds=5)
TRACKED_LINK_MARKER = "inbox-relay"

_TRACKABLE_HREF = re.compile(r"^https?://", re.IGNORECASE)
_PIXEL_STYLE = "display:none;max-height:1px !important;max-width:1px !important;"
_DOCTYPE = "<!DOCTYPE html>"


def _new_token() -> str:
    return str(uuid.uuid4())


def extract_trackable_links(html: str) -> list[str]:
    """Return absolute http(s) link targets in document order."""
    soup = BeautifulSoup(html, "html.parser")
    links = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href and _TRACKABLE_HREF.match(href):
            links.append(href)
    return links


def inject_tracking(html: str, pixel_url: str | None, link_urls: Sequence[str]) -> str:
    """Append the open pixel and rewrite trackable links by position."""
    soup = BeautifulSoup(html, "html.parser")
    if pixel_url:
        pixel = soup.new_tag(
            "img",
            attrs={
                "src": pixel_url,
                "alt": "",
                "width": "1",
                "height": "1",
                "style": _PIXEL_STYLE,
            },
        )
        (soup.body or soup).append(pixel)

    position = 0
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or not _TRACKABLE_HREF.match(href):
            continue
        if position < len(link_urls):
            anchor["href"] = link_urls[position]
            anchor["data-tracked"] = TRACKED_LINK_MARKER
        position += 1

    rendered = str(soup)
    return rendered if rendered.startswith(_DOCTYPE) else f"{_DOCTYPE}\n{rendered}"


class EmailTracker:
    """Record tracked emails and count opens and clicks per recipient."""

    def __init__(
        self,
        store: SqliteMessagingStore,
        settings: TrackingSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = _new_token,
    ) -> None:
        """Initialise the tracker with its store and public base URL."""
        self._store = store
        self._settings = settings or TrackingSettings()
        self._clock = clock
        self._token_factory = token_factory

    @property
    def base_url(self) -> str:
        """Return the public URL without a trailing slash."""
        return self._settings.base_url.rstrip("/")

    def open_url(self, token: str) -> str:
        """Return the pixel URL for an open token."""
        return f"{self.base_url}/api/tracking/open/{token}.png"

    def click_url(self, token: str) -> str:
        """Return the redirect URL for a click token."""
        return f"{self.base_url}/api/tracking/click/{token}"

    # TrackingService API -----------------------------------------------------
    # pylint: disable=too-many-arguments
    def prepare(
        self,
        tenant: str,
        message_id: str,
        subject: str,
        sent_at: datetime,
        html: str,
        recipients: Sequence[Recipient],
        *,
        enabled: bool,
    ) -> list[PreparedRecipient]:
        """Record the email and return one HTML variant per recipient."""
        if not recipients:
            raise RecipientError("No recipient supplied for tracked email")

        links = extract_trackable_links(html) if enabled else []
        records = tuple(
            TrackedRecipientRecord(
                address=recipient.address,
                name=recipient.name,
                kind=recipient.kind,
                open_token=self._token_factory(),
                link_tokens=tuple(self._token_factory() for _ in links),
            )
            for recipient in recipients
        )
        self._store.create_tracked_email(
            TrackedEmailRecord(
                tenant=tenant,
                message_id=message_id,
                subject=subject,
                sent_at=sent_at,
                tracking_enabled=enabled,
                recipients=records,
                links=tuple(links),
            )
        )

        if not enabled:
            return [PreparedRecipient(address=item.address, html=html) for item in records]
        return [
            PreparedRecipient(
                address=item.address,
                html=inject_tracking(
                    html,
                    self.open_url(item.open_token),
                    [self.click_url(token) for token in item.link_tokens],
                ),
            )
            for item in records
        ]

    def summarize(
        self, tenant: str, message_ids: Sequence[str]
    ) -> dict[str, TrackingStats]:
        """Return counters for the tracked subset of ``message_ids``."""
        return self._store.tracking_stats(tenant, list(dict.fromkeys(message_ids)))

    def detail(self, tenant: str, message_id: str) -> TrackingDetail | None:
        """Return the full report for one message."""
        return self._store.tracking_detail(tenant, message_id)

    # Event recording ---------------------------------------------------------
    def record_open(self, token: str, user_agent: str | None = None) -> bool:
        """Count an open unless the same client opened within two minutes."""
        counted = self._store.record_open(
            token, user_agent, self._clock(), OPEN_DEDUPE_WINDOW
        )
        if counted is None:
            LOGGER.debug("Ignoring open for unknown token %s", token)
            return False
        if not counted:
            LOGGER.debug("Duplicate open ignored for token %s", token)
        return counted

    def record_click(self, token: str, user_agent: str | None = None) -> str | None:
        """Count a click and return the original URL; ``None`` for unknown tokens."""
        result = self._store.record_click(
            token, user_agent, self._clock(), CLICK_DEDUPE_WINDOW
        )
        if result is None:
            LOGGER.warning("Click token %s not found", token)
            return None
        if not result.counted:
            LOGGER.debug("Duplicate click ignored for token %s", token)
        return result.url


__all__ = [
    "CLICK_DEDUPE_WINDOW",
    "EmailTracker",
    "OPEN_DEDUPE_WINDOW",
    "extract_trackable_links",
    "inject_tracking",
]
