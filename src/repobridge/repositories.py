from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from .provisioning.naming import repository_prefix, strip_symbols
from .provisioning.spec import DesiredStateDocument

log = logging.getLogger("repobridge.repositories")


def repo_from_category(category_name: Optional[str]) -> Optional[str]:
    """Repository name implied by a category such as ``📦 QiFlow``."""
    if not category_name:
        return None
    name = strip_symbols(category_name)
    return name or None


class RepositoryDirectory:
    """Maps channel-name prefixes to tracker repository names.

    ``qiflowgo-bug-reports`` resolves to QiFlowGo even when ``qiflow`` is
    also known: the longest matching prefix wins.
    """

    def __init__(self, prefixes: Optional[Mapping[str, str]] = None) -> None:
        self._prefixes: Dict[str, str] = {}
        for prefix, repo in (prefixes or {}).items():
            self.add(prefix, repo)

    @classmethod
    def from_document(
        cls, doc: DesiredStateDocument, extra: Optional[Mapping[str, str]] = None
    ) -> "RepositoryDirectory":
        directory = cls()
        for category in doc.categories:
            if category.is_repository:
                repo = strip_symbols(category.name)
                directory.add(repository_prefix(repo), repo)
        for prefix, repo in (extra or {}).items():
            directory.add(prefix, repo)
        return directory

    def add(self, prefix: str, repo: str) -> None:
        key = prefix.strip().lower().rstrip("-")
        if not key:
            return
        self._prefixes[key] = repo

    def entries(self) -> List[Tuple[str, str]]:
        return sorted(self._prefixes.items())

    def repo_for_channel(self, channel_name: Optional[str]) -> Optional[str]:
        if not channel_name:
            return None
        name = channel_name.lower()
        for prefix in sorted(self._prefixes, key=len, reverse=True):
            if name == prefix or name.startswith(prefix + "-"):
                return self._prefixes[prefix]
        return None

    def __len__(self) -> int:
        return len(self._prefixes)


def issue_kind_for_channel(channel_name: Optional[str]) -> Optional[str]:
    """``feature`` or ``bug`` when the channel collects issue drafts."""
    if not channel_name:
        return None
    name = channel_name.lower()
    if "feature" in name:
        return "feature"
    if "bug" in name:
        return "bug"
    return None
