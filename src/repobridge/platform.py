"""
discord.py implementation of the chat platform capabilities.

Permission names in the structure document use Discord's PascalCase API
spelling (``ViewChannel``); discord.py spells flags in snake_case.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Optional, Sequence

import discord

from .interfaces import LiveCategory, LiveChannel, LiveGuildState, LiveRole, ResolvedOverlay
from .provisioning.rate_limiter import RateLimiter
from .provisioning.spec import RoleSpec

log = logging.getLogger("repobridge.platform")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

AUDIT_REASON = "Server structure setup"


def flag_name(permission: str) -> str:
    """``ViewChannel`` -> ``view_channel``; snake_case input passes through."""
    return _CAMEL_RE.sub("_", permission).lower()


def permission_flags(names: Iterable[str]) -> Dict[str, bool]:
    flags: Dict[str, bool] = {}
    for name in names:
        flag = flag_name(name)
        if flag not in discord.Permissions.VALID_FLAGS:
            log.warning("Ignoring unknown permission %r", name)
            continue
        flags[flag] = True
    return flags


def build_overwrite(allow: Iterable[str], deny: Iterable[str]) -> discord.PermissionOverwrite:
    values: Dict[str, Optional[bool]] = dict(permission_flags(allow))
    for flag in permission_flags(deny):
        values[flag] = False
    return discord.PermissionOverwrite(**values)


def parse_colour(value: str) -> discord.Colour:
    try:
        return discord.Colour.from_str(value if value.startswith("#") else f"#{value}")
    except ValueError:
        log.warning("Invalid role colour %r, using default", value)
        return discord.Colour.default()


class DiscordPlatform:
    """ChatPlatformClient bound to one guild."""

    def __init__(self, guild: discord.Guild, rate_limiter: Optional[RateLimiter] = None) -> None:
        self.guild = guild
        self.rate_limiter = rate_limiter or RateLimiter()
        # roles created here before GUILD_ROLE_CREATE reaches the cache
        self._created_roles: Dict[int, discord.Role] = {}

    def _overwrites(
        self, overlays: Sequence[ResolvedOverlay]
    ) -> Dict[discord.Role, discord.PermissionOverwrite]:
        result: Dict[discord.Role, discord.PermissionOverwrite] = {}
        for overlay in overlays:
            role = self._created_roles.get(overlay.target_id) or self.guild.get_role(overlay.target_id)
            if role is None:
                log.warning("Overlay target %d no longer exists in %s", overlay.target_id, self.guild.name)
                continue
            result[role] = build_overwrite(overlay.allow, overlay.deny)
        return result

    async def snapshot(self) -> LiveGuildState:
        return LiveGuildState(
            everyone_id=self.guild.default_role.id,
            roles=[LiveRole(r.id, r.name) for r in self.guild.roles],
            categories=[LiveCategory(c.id, c.name) for c in self.guild.categories],
            channels=[
                LiveChannel(c.id, c.name, c.category_id, c.topic or "")
                for c in self.guild.text_channels
            ],
        )

    async def create_role(self, spec: RoleSpec) -> LiveRole:
        role = await self.rate_limiter.execute(
            self.guild.create_role,
            name=spec.name,
            kind="Role",
            label=spec.name,
            colour=parse_colour(spec.color),
            permissions=discord.Permissions(**permission_flags(spec.permissions)),
            mentionable=spec.mentionable,
            hoist=spec.hoist,
            reason=AUDIT_REASON,
        )
        self._created_roles[role.id] = role
        return LiveRole(role.id, role.name)

    async def create_category(self, name: str, overlays: Sequence[ResolvedOverlay]) -> LiveCategory:
        category = await self.rate_limiter.execute(
            self.guild.create_category,
            name,
            kind="Category",
            label=name,
            overwrites=self._overwrites(overlays),
            reason=AUDIT_REASON,
        )
        return LiveCategory(category.id, category.name)

    async def create_text_channel(
        self,
        name: str,
        parent_id: int,
        topic: str,
        overlays: Sequence[ResolvedOverlay],
    ) -> LiveChannel:
        parent = self.guild.get_channel(parent_id)
        channel = await self.rate_limiter.execute(
            self.guild.create_text_channel,
            name,
            kind="Channel",
            label=name,
            category=parent,
            topic=topic or None,
            overwrites=self._overwrites(overlays),
            reason=AUDIT_REASON,
        )
        return LiveChannel(channel.id, channel.name, parent_id, topic)

    async def replace_overlays(self, target_id: int, overlays: Sequence[ResolvedOverlay]) -> None:
        target = self.guild.get_channel(target_id)
        if target is None:
            log.warning("Cannot update overlays, channel %d not found", target_id)
            return
        await self.rate_limiter.execute(
            target.edit, kind="Channel", label=target.name, overwrites=self._overwrites(overlays), reason=AUDIT_REASON
        )

    def find_text_channel(self, candidates: Sequence[str]) -> Optional[discord.TextChannel]:
        """First text channel whose name equals a candidate, in candidate order."""
        by_name: Dict[str, discord.TextChannel] = {}
        for channel in self.guild.text_channels:
            by_name.setdefault(channel.name.lower(), channel)
        for candidate in candidates:
            channel = by_name.get(candidate.lower())
            if channel is not None:
                return channel
        return None

    async def post_embed(self, channel: discord.abc.Messageable, embed: discord.Embed) -> None:
        await self.rate_limiter.execute(channel.send, kind="Message", embed=embed)
