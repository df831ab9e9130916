"""Folder scoring: map server folder names onto logical mailboxes.

Every function here is pure. Lower weights are more confident matches and
candidates are tried in ascending ``(weight, path)`` order.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

from ..core.models import FolderInfo, Mailbox

INBOX_PATH = "INBOX"

CACHED_WEIGHT = -10
SPECIAL_USE_WEIGHT = -5
STATIC_FALLBACK_WEIGHT = 20

SPECIAL_USE: dict[Mailbox, str] = {
    Mailbox.SENT: "\\sent",
    Mailbox.DRAFTS: "\\drafts",
    Mailbox.TRASH: "\\trash",
    Mailbox.SPAM: "\\junk",
}

# Each tier lists token sets; a folder matches a tier when one of its name
# variants contains every token of any set in that tier. Tier index is the
# weight.
PHRASE_TIERS: dict[Mailbox, tuple[tuple[frozenset[str], ...], ...]] = {
    Mailbox.SENT: (
        (
            frozenset({"gmail", "sent", "mail"}),
            frozenset({"gmail", "messages", "envoyes"}),
            frozenset({"gmail", "courrier", "envoye"}),
        ),
        (
            frozenset({"sent", "mail"}),
            frozenset({"messages", "envoyes"}),
            frozenset({"courrier", "envoye"}),
        ),
        (frozenset({"sent", "items"}), frozenset({"sent", "messages"})),
        (
            frozenset({"envoye"}),
            frozenset({"envoyes"}),
            frozenset({"envoyee"}),
            frozenset({"envoyees"}),
        ),
        (frozenset({"sent"}),),
    ),
    Mailbox.DRAFTS: (
        (frozenset({"gmail", "drafts"}), frozenset({"gmail", "brouillons"})),
        (
            frozenset({"drafts"}),
            frozenset({"draft"}),
            frozenset({"brouillons"}),
            frozenset({"brouillon"}),
        ),
    ),
    Mailbox.TRASH: (
        (
            frozenset({"gmail", "trash"}),
            frozenset({"gmail", "corbeille"}),
            frozenset({"gmail", "bin"}),
        ),
        (frozenset({"deleted", "items"}), frozenset({"deleted", "messages"})),
        (frozenset({"trash"}), frozenset({"corbeille"}), frozenset({"bin"})),
    ),
    Mailbox.SPAM: (
        (frozenset({"gmail", "spam"}), frozenset({"gmail", "junk"})),
        (
            frozenset({"junk", "mail"}),
            frozenset({"courrier", "indesirable"}),
            frozenset({"spam", "messages"}),
        ),
        (frozenset({"spam"}), frozenset({"junk"}), frozenset({"indesirable"})),
    ),
}

STATIC_CANDIDATES: dict[Mailbox, tuple[str, ...]] = {
    Mailbox.INBOX: (INBOX_PATH,),
    Mailbox.SENT: (
        "Sent",
        "Sent Mail",
        "Sent Items",
        "Sent Messages",
        "Envoyés",
        "Envoyes",
        "Envoyees",
        "Messages envoyés",
        "Messages envoyes",
        "Courrier envoyé",
        "[Gmail]/Sent Mail",
        "[Gmail]/Messages envoyés",
        "INBOX.Sent",
        "INBOX/Sent",
        "INBOX.Sent Items",
        "INBOX/Sent Items",
        "INBOX.Sent Mail",
        "INBOX.Envoyes",
    ),
    Mailbox.DRAFTS: (
        "Drafts",
        "Draft",
        "Brouillons",
        "INBOX.Drafts",
        "INBOX/Drafts",
        "[Gmail]/Drafts",
    ),
    Mailbox.TRASH: (
        "Trash",
        "Deleted Items",
        "Deleted Messages",
        "Corbeille",
        "INBOX.Trash",
        "INBOX/Trash",
        "[Gmail]/Trash",
        "[Gmail]/Corbeille",
    ),
    Mailbox.SPAM: (
        "Spam",
        "Junk",
        "Junk Mail",
        "Courrier indésirable",
        "INBOX.Spam",
        "INBOX/Spam",
        "[Gmail]/Spam",
        "[Gmail]/Junk",
    ),
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_folder_name(value: str) -> str:
    """Strip diacritics, collapse punctuation to spaces and lowercase."""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_ALNUM.sub(" ", stripped.lower()).strip()


def name_variants(folder: FolderInfo) -> list[str]:
    """Return the full path and its leaf segment, in that order."""
    variants = [folder.path]
    delimiter = folder.delimiter or "/"
    segments = [segment for segment in folder.path.split(delimiter) if segment]
    if segments and segments[-1] != folder.path:
        variants.append(segments[-1])
    return variants


def phrase_weight(mailbox: Mailbox, names: Iterable[str]) -> int | None:
    """Return the best tier matched by any normalised name, if any."""
    tiers = PHRASE_TIERS.get(mailbox, ())
    best: int | None = None
    for name in names:
        tokens = set(normalize_folder_name(name).split())
        if not tokens:
            continue
        for weight, phrases in enumerate(tiers):
            if best is not None and weight >= best:
                break
            if any(phrase <= tokens for phrase in phrases):
                best = weight
                break
    return best


def score_folder(mailbox: Mailbox, folder: FolderInfo) -> int | None:
    """Weight ``folder`` as a candidate for ``mailbox``; ``None`` means no match."""
    if mailbox is Mailbox.INBOX or folder.path.upper() == INBOX_PATH:
        return None
    special = folder.special_use
    if special is not None and special.lower() == SPECIAL_USE.get(mailbox):
        return SPECIAL_USE_WEIGHT
    return phrase_weight(mailbox, name_variants(folder))


def rank_candidates(
    mailbox: Mailbox,
    folders: Iterable[FolderInfo],
    *,
    cached: str | None = None,
) -> list[str]:
    """Return candidate paths for ``mailbox``, best first.

    Ties are broken by path so the order is deterministic for a given
    folder listing.
    """
    weights: dict[str, int] = {}

    def record(path: str | None, weight: int) -> None:
        if not path:
            return
        existing = weights.get(path)
        if existing is None or weight < existing:
            weights[path] = weight

    record(cached, CACHED_WEIGHT)
    if mailbox is Mailbox.INBOX:
        record(INBOX_PATH, 0)
    else:
        for folder in folders:
            weight = score_folder(mailbox, folder)
            if weight is not None:
                record(folder.path, weight)
        for path in STATIC_CANDIDATES.get(mailbox, ()):
            record(path, STATIC_FALLBACK_WEIGHT)

    return [path for path, _ in sorted(weights.items(), key=lambda item: (item[1], item[0]))]


__all__ = [
    "CACHED_WEIGHT",
    "INBOX_PATH",
    "PHRASE_TIERS",
    "SPECIAL_USE",
    "SPECIAL_USE_WEIGHT",
    "STATIC_CANDIDATES",
    "STATIC_FALLBACK_WEIGHT",
    "name_variants",
    "normalize_folder_name",
    "phrase_weight",
    "rank_candidates",
    "score_folder",
]
