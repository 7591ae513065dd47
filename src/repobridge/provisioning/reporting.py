"""
Reconciliation reporting.

Keeps the setup summary inside Discord's message limits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from ..constants import DEFAULT_CHUNK_SIZE


@dataclass
class ReconciliationReport:
    roles_created: int = 0
    roles_existing: int = 0
    categories_created: int = 0
    categories_existing: int = 0
    channels_created: int = 0
    channels_skipped: int = 0
    channels_failed: int = 0
    failed_channels: List[Tuple[str, str]] = field(default_factory=list)
    dropped_overlays: List[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return self.roles_created + self.categories_created + self.channels_created

    def record_channel_failure(self, name: str, reason: str) -> None:
        self.channels_failed += 1
        self.failed_channels.append((name, reason))

    def summary(self) -> str:
        lines = [
            f"Roles: {self.roles_created} created, {self.roles_existing} existing",
            f"Categories: {self.categories_created} created, {self.categories_existing} existing",
            f"Channels: {self.channels_created} created, {self.channels_skipped} existing, "
            f"{self.channels_failed} failed",
        ]
        if self.failed_channels:
            lines.append("Failed channels:")
            lines.extend(f"- #{name}: {reason}" for name, reason in self.failed_channels)
        if self.dropped_overlays:
            lines.append(f"Unresolved overlay roles dropped: {', '.join(sorted(set(self.dropped_overlays)))}")
        return truncate_message("\n".join(lines))


def truncate_message(content: str, max_length: int = DEFAULT_CHUNK_SIZE) -> str:
    """Truncate a message to fit within Discord's limits."""
    if len(content) <= max_length:
        return content
    return content[:max_length] + "\n\n... (truncated)"
