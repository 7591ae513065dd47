"""
Command permission evaluation.

``PermissionsConfig`` is loaded once from JSON and held by a
``PermissionsStore``; ``reload()`` swaps the whole structure so readers
never see a half-loaded document. Evaluation itself does no I/O.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

import discord

from .errors import ConfigNotFound, PermissionDenied, ValidationFailed

log = logging.getLogger("repobridge.permissions")

DEFAULT_GUILD_KEY = "default"
WILDCARD = "*"


@dataclass(frozen=True)
class CommandPolicy:
    enabled: bool = True
    allowed_channel_patterns: Tuple[str, ...] = (WILDCARD,)
    allowed_role_names: Tuple[str, ...] = (WILDCARD,)
    require_admin: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommandPolicy":
        # an explicit empty list matches nothing; only a missing key means "*"
        channels = data.get("channels")
        roles = data.get("roles")
        return cls(
            enabled=bool(data.get("enabled", True)),
            allowed_channel_patterns=(WILDCARD,) if channels is None else tuple(channels),
            allowed_role_names=(WILDCARD,) if roles is None else tuple(roles),
            require_admin=bool(data.get("requireAdmin", False)),
        )


@dataclass(frozen=True)
class GuildPolicy:
    enabled: bool = False
    commands: Dict[str, CommandPolicy] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuildPolicy":
        raw_commands = data.get("commands") or {}
        if not isinstance(raw_commands, dict):
            raise ValidationFailed("'commands' must be an object keyed by command name")
        return cls(
            enabled=bool(data.get("enabled", False)),
            commands={name: CommandPolicy.from_dict(c or {}) for name, c in raw_commands.items()},
        )


@dataclass(frozen=True)
class PermissionsConfig:
    per_guild: Dict[str, GuildPolicy] = field(default_factory=dict)
    global_admin_role_names: FrozenSet[str] = frozenset({"Founder", "Administrator"})

    def guild_policy(self, guild_id: int | str) -> Optional[GuildPolicy]:
        return self.per_guild.get(str(guild_id)) or self.per_guild.get(DEFAULT_GUILD_KEY)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionsConfig":
        if not isinstance(data, dict):
            raise ValidationFailed("Permissions document must be a JSON object")
        servers = data.get("servers") or {}
        if not isinstance(servers, dict):
            raise ValidationFailed("'servers' must be an object keyed by guild id")
        admin_roles = data.get("globalAdminRoles")
        return cls(
            per_guild={str(k): GuildPolicy.from_dict(v or {}) for k, v in servers.items()},
            global_admin_role_names=frozenset(admin_roles) if admin_roles is not None
            else frozenset({"Founder", "Administrator"}),
        )


class PermissionsStore:
    """Holds the current PermissionsConfig; ``reload()`` replaces it atomically."""

    def __init__(self, path: str, config: Optional[PermissionsConfig] = None) -> None:
        self.path = path
        self._config = config

    @property
    def config(self) -> PermissionsConfig:
        if self._config is None:
            self._config = self._read()
        return self._config

    def _read(self) -> PermissionsConfig:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigNotFound(self.path) from e
        except json.JSONDecodeError as e:
            raise ValidationFailed(f"Malformed permissions document {self.path}: {e}") from e
        return PermissionsConfig.from_dict(data)

    def load(self) -> PermissionsConfig:
        return self.config

    def reload(self) -> PermissionsConfig:
        config = self._read()
        self._config = config
        log.info("Reloaded permissions from %s (%d guild entries)", self.path, len(config.per_guild))
        return config


@dataclass(frozen=True)
class Actor:
    user_id: int
    role_names: FrozenSet[str] = frozenset()
    is_administrator: bool = False


def actor_from_member(member: discord.abc.User) -> Actor:
    roles = getattr(member, "roles", None) or []
    perms = getattr(member, "guild_permissions", None)
    return Actor(
        user_id=member.id,
        role_names=frozenset(r.name for r in roles),
        is_administrator=bool(perms and perms.administrator),
    )


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str = ""


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE)


def channel_matches_pattern(channel_name: Optional[str], pattern: str) -> bool:
    """Wildcard match: ``*`` any run, ``?`` one character, case-insensitive, anchored."""
    if pattern == WILDCARD:
        return True
    if channel_name is None:
        return False
    return _compile_pattern(pattern).fullmatch(channel_name) is not None


def is_admin(actor: Actor, config: PermissionsConfig, extra_roles: Iterable[str] = ()) -> bool:
    if actor.is_administrator:
        return True
    admin_roles = set(config.global_admin_role_names) | set(extra_roles)
    return bool(actor.role_names & admin_roles)


class PermissionEvaluator:
    def __init__(self, store: PermissionsStore) -> None:
        self.store = store

    @property
    def config(self) -> PermissionsConfig:
        return self.store.config

    def is_admin(self, actor: Actor) -> bool:
        return is_admin(actor, self.config)

    def evaluate(
        self,
        actor: Actor,
        channel_name: Optional[str],
        guild_id: Optional[int],
        command: str,
    ) -> PermissionResult:
        """Decide whether ``actor`` may run ``command`` in ``channel_name``.

        Checks run in a fixed order and stop at the first failure: guild
        context, guild enabled, command configured, command enabled,
        channel pattern, role list, admin requirement.
        """
        config = self.config
        if not guild_id:
            return PermissionResult(False, "no guild context")

        guild = config.guild_policy(guild_id)
        if guild is None or not guild.enabled:
            return PermissionResult(False, "bot disabled for this context")

        policy = guild.commands.get(command)
        if policy is None:
            return PermissionResult(False, "command not configured")
        if not policy.enabled:
            return PermissionResult(False, "command disabled")

        patterns = policy.allowed_channel_patterns
        if not any(channel_matches_pattern(channel_name, p) for p in patterns):
            return PermissionResult(
                False, f"`{command}` can only be used in these channels: {', '.join(patterns) or 'none'}"
            )

        roles = policy.allowed_role_names
        if WILDCARD not in roles and not (actor.role_names & set(roles)):
            return PermissionResult(False, f"`{command}` requires one of these roles: {', '.join(roles) or 'none'}")

        if policy.require_admin and not is_admin(actor, config):
            return PermissionResult(False, f"`{command}` requires administrator privileges")

        return PermissionResult(True)

    def require(
        self,
        actor: Actor,
        channel_name: Optional[str],
        guild_id: Optional[int],
        command: str,
    ) -> None:
        result = self.evaluate(actor, channel_name, guild_id, command)
        if not result.allowed:
            log.debug("Denied %s for user %s: %s", command, actor.user_id, result.reason)
            raise PermissionDenied(result.reason)
