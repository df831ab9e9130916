"""Local persistence."""

from .sqlite import (
    ClickResult,
    SqliteMessagingStore,
    TrackedEmailRecord,
    TrackedRecipientRecord,
)

__all__ = [
    "ClickResult",
    "SqliteMessagingStore",
    "TrackedEmailRecord",
    "TrackedRecipientRecord",
]
