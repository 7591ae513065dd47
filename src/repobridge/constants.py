from __future__ import annotations

from typing import Final

# Discord limits
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256

# Message chunking
DEFAULT_CHUNK_SIZE: Final[int] = 1900
DEFAULT_MAX_SEGMENTS: Final[int] = 5
CONTINUATION_PAUSE_SECONDS: Final[float] = 0.5

# Issue drafts
ISSUE_MIN_LENGTH: Final[int] = 10
ISSUE_TITLE_MAX: Final[int] = 100

# Webhook notifications
MAX_PUSH_COMMITS: Final[int] = 5
COMMIT_TITLE_MAX: Final[int] = 100

# Purge
PURGE_ALL_DEFAULT_LIMIT: Final[int] = 100
PURGE_ALL_MAX_LIMIT: Final[int] = 1000
PURGE_DELETE_PAUSE_SECONDS: Final[float] = 0.2

# Feature request approval window
APPROVAL_TIMEOUT_SECONDS: Final[int] = 86_400

EVERYONE_SENTINELS: Final[frozenset[str]] = frozenset({"@everyone", "everyone"})
REPOSITORY_MARKER: Final[str] = "📦"

# Acknowledgement markers
WORKING_MARKER: Final[str] = "⏳"
SUCCESS_MARKER: Final[str] = "✅"
FAILURE_MARKER: Final[str] = "❌"

COLORS = {
    "default": 0x5865F2,
    "success": 0x57F287,
    "error": 0xED4245,
    "urgent": 0xFF6B6B,
}

PRIORITY_LEVELS: Final[tuple[str, ...]] = ("critical", "urgent", "high", "medium", "low")
PRIORITY_EMOJI = {
    "critical": "🔴",
    "urgent": "🟠",
    "high": "🟡",
    "medium": "🟢",
    "low": "🔵",
}
APPROVAL_PRIORITIES: Final[frozenset[str]] = frozenset({"critical", "urgent"})

ISSUE_LABELS = {
    "feature": ["enhancement"],
    "bug": ["bug"],
}

DEFAULT_ROLE_PERMISSIONS: Final[tuple[str, ...]] = ("ViewChannel", "SendMessages", "ReadMessageHistory")
