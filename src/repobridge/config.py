from __future__ import annotations

import os
from dataclasses import dataclass, field


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


def _get_pairs(name: str, sep: str) -> dict[str, str]:
    """Parse ``key=value`` pairs, e.g. ``qiflow=QiFlow,qiflowgo=QiFlowGo``."""
    pairs: dict[str, str] = {}
    for item in os.getenv(name, "").split(sep):
        key, _, value = item.partition("=")
        if key.strip() and value.strip():
            pairs[key.strip()] = value.strip()
    return pairs


@dataclass(frozen=True)
class Settings:
    token: str
    github_token: str
    github_owner: str
    github_api_url: str
    structure_path: str
    permissions_path: str
    command_prefix: str
    log_level: str
    sync_guild_id: int

    # Provisioning pacing. Fixed delays, single channel retry; see provisioning.engine.
    category_create_delay_ms: int
    channel_create_delay_ms: int
    rate_limit_fallback_ms: int
    sync_existing_overlays: bool

    # Assistant
    assistant_command: str
    assistant_timeout_seconds: int
    assistant_admin_role: str

    # Message shaping
    message_chunk_size: int
    max_continuation_segments: int
    issue_min_length: int
    issue_title_max: int

    # Webhook listener
    webhook_enabled: bool
    webhook_host: str
    webhook_port: int
    webhook_secret: str
    webhook_guild_id: int

    repo_prefixes: dict[str, str] = field(default_factory=dict)
    assistant_repo_paths: dict[str, str] = field(default_factory=dict)


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        github_token=os.getenv("GITHUB_TOKEN", "").strip(),
        github_owner=_get_str("GITHUB_OWNER", "irsiksoftware"),
        github_api_url=_get_str("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        structure_path=_get_str("STRUCTURE_PATH", os.path.join("config", "discord-structure.json")),
        permissions_path=_get_str("PERMISSIONS_PATH", os.path.join("config", "permissions.json")),
        command_prefix=_get_str("COMMAND_PREFIX", "!"),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        category_create_delay_ms=_get_int("CATEGORY_CREATE_DELAY_MS", 500),
        channel_create_delay_ms=_get_int("CHANNEL_CREATE_DELAY_MS", 300),
        rate_limit_fallback_ms=_get_int("RATE_LIMIT_FALLBACK_MS", 2000),
        sync_existing_overlays=_get_bool("SYNC_EXISTING_OVERLAYS", False),
        assistant_command=_get_str("ASSISTANT_COMMAND", "claude"),
        assistant_timeout_seconds=_get_int("ASSISTANT_TIMEOUT_SECONDS", 120),
        assistant_admin_role=_get_str("ASSISTANT_ADMIN_ROLE", "Founder"),
        message_chunk_size=_get_int("MESSAGE_CHUNK_SIZE", 1900),
        max_continuation_segments=_get_int("MAX_CONTINUATION_SEGMENTS", 5),
        issue_min_length=_get_int("ISSUE_MIN_LENGTH", 10),
        issue_title_max=_get_int("ISSUE_TITLE_MAX", 100),
        webhook_enabled=_get_bool("WEBHOOK_ENABLED", False),
        webhook_host=_get_str("WEBHOOK_HOST", "0.0.0.0"),
        webhook_port=_get_int("WEBHOOK_PORT", 3000),
        webhook_secret=os.getenv("WEBHOOK_SECRET", "").strip(),
        webhook_guild_id=_get_int("WEBHOOK_GUILD_ID", 0),
        repo_prefixes={k.lower(): v for k, v in _get_pairs("REPO_PREFIXES", ",").items()},
        assistant_repo_paths=_get_pairs("ASSISTANT_REPO_PATHS", ";"),
    )
