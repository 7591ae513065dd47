"""
Name normalisation for matching desired specs against live objects.

Categories carry decorative pictograph prefixes ("📦 QiFlow", "🛠️ SUPPORT")
that humans add and remove freely, so they are matched on a normalised form.
These helpers are pure and independent of the reconciliation loop.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Protocol, TypeVar

_SYMBOL_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"  # pictographs, emoji, mahjong/cards, extended symbols
    "\u2300-\u23FF"  # misc technical (⏳, ⌛)
    "\u2600-\u27BF"  # misc symbols, dingbats
    "\u2B00-\u2BFF"  # arrows and stars
    "\uFE00-\uFE0F"  # variation selectors
    "\u200D"  # zero width joiner
    "\u20E3"  # keycap
    "]+"
)
_SPACE_RE = re.compile(r"\s+")


class Named(Protocol):
    name: str


N = TypeVar("N", bound=Named)


def strip_symbols(name: str) -> str:
    """Remove pictograph/symbol characters and trim: ``"📦 QiFlow" -> "QiFlow"``."""
    return _SPACE_RE.sub(" ", _SYMBOL_RE.sub("", name or "")).strip()


def normalize_name(name: str) -> str:
    return strip_symbols(name).casefold()


def names_match(desired: str, live: str) -> bool:
    """Fuzzy match: equal or contained either way after normalisation."""
    a = normalize_name(desired)
    b = normalize_name(live)
    if not a or not b:
        return False
    return a == b or a in b or b in a


def find_exact(candidates: Iterable[N], target: str) -> Optional[N]:
    """Exact name first, then equal normalised name."""
    items = list(candidates)
    for c in items:
        if c.name == target:
            return c
    t_norm = normalize_name(target)
    if not t_norm:
        return None
    for c in items:
        if normalize_name(c.name) == t_norm:
            return c
    return None


def find_fuzzy(candidates: Iterable[N], target: str) -> Optional[N]:
    """Best fuzzy match for ``target``.

    Preference order: exact name, equal normalised name, then containment.
    Among containment matches the first candidate wins.
    """
    items = list(candidates)
    found = find_exact(items, target)
    if found is not None:
        return found
    for c in items:
        if names_match(target, c.name):
            return c
    return None


def repository_prefix(name: str) -> str:
    """Channel prefix for a repository name: lower-cased, whitespace removed."""
    return _SPACE_RE.sub("", strip_symbols(name)).lower()
