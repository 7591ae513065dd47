from __future__ import annotations

import asyncio
import logging
import math
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..constants import (
    APPROVAL_TIMEOUT_SECONDS,
    COLORS,
    PRIORITY_EMOJI,
    PRIORITY_LEVELS,
    PURGE_ALL_DEFAULT_LIMIT,
    PURGE_ALL_MAX_LIMIT,
    SUCCESS_MARKER,
)
from ..permissions import actor_from_member, is_admin
from ..responders import InteractionResponder
from ..router import (
    AdminAddRepo,
    AdminAddRole,
    AdminRemoveRepo,
    AdminSetup,
    Clear,
    Command,
    FeatureRequest,
    FetchDocs,
    Help,
    Invocation,
    ListRepos,
    Ping,
    Purge,
    PurgeAll,
    Reload,
)
from ..repositories import repo_from_category

log = logging.getLogger("repobridge.cogs.commands")

PRIORITY_CHOICES = [
    app_commands.Choice(name=f"{PRIORITY_EMOJI[p]} {p.title()}", value=p) for p in PRIORITY_LEVELS
]


def invocation_from_interaction(bot: commands.Bot, interaction: discord.Interaction, ephemeral: bool = False) -> Invocation:
    channel = interaction.channel
    category = getattr(channel, "category", None)
    latency = bot.latency
    return Invocation(
        actor=actor_from_member(interaction.user),
        guild_id=interaction.guild_id,
        channel_name=getattr(channel, "name", None),
        responder=InteractionResponder(interaction, ephemeral=ephemeral),
        category_name=category.name if category else None,
        author_tag=str(interaction.user),
        channel_id=interaction.channel_id or 0,
        guild=interaction.guild,
        channel=channel,
        bot_user=bot.user,
        latency_ms=round(latency * 1000) if math.isfinite(latency) else None,
    )


class CommandsCog(commands.Cog):
    """Slash-command surface. Every command goes through the same router as chat messages."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.bot.router.approver = self.await_approval  # type: ignore[attr-defined]

    async def _run(self, interaction: discord.Interaction, command: Command, ephemeral: bool = False) -> None:
        inv = invocation_from_interaction(self.bot, interaction, ephemeral=ephemeral)
        await self.bot.router.execute(command, inv)  # type: ignore[attr-defined]

    async def await_approval(self, request: FeatureRequest, inv: Invocation) -> Optional[str]:
        """Post the request and wait for an admin ✅ reaction; returns the approver's tag."""
        responder = inv.responder
        if not isinstance(responder, InteractionResponder):
            return None
        interaction = responder.interaction
        embed = discord.Embed(
            title=f"{PRIORITY_EMOJI[request.priority]} Feature Request: {request.title}",
            description=request.description,
            color=COLORS["urgent"],
        )
        embed.add_field(name="Priority", value=request.priority.upper(), inline=True)
        embed.add_field(name="Requested by", value=inv.author_tag, inline=True)
        embed.set_footer(text=f"Awaiting admin approval - react with {SUCCESS_MARKER} to approve")
        await responder.reply(embed=embed)
        message = await interaction.original_response()
        await message.add_reaction(SUCCESS_MARKER)

        config = self.bot.router.evaluator.config  # type: ignore[attr-defined]
        guild = interaction.guild

        def check(reaction: discord.Reaction, user: discord.abc.User) -> bool:
            if reaction.message.id != message.id or str(reaction.emoji) != SUCCESS_MARKER or user.bot:
                return False
            member = guild.get_member(user.id) if guild else None
            return member is not None and is_admin(actor_from_member(member), config)

        try:
            _, user = await self.bot.wait_for("reaction_add", check=check, timeout=APPROVAL_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            log.info("Feature request %r timed out awaiting approval", request.title)
            return None
        return str(user)

    @app_commands.guild_only()
    @app_commands.command(name="readme", description="Fetch a repository README.")
    @app_commands.describe(
        repo="Repository name (detected from the channel category if omitted)",
        path="Fetch this file instead of the README, e.g. docs/INSTALL.md",
    )
    async def readme(
        self, interaction: discord.Interaction, repo: Optional[str] = None, path: Optional[str] = None
    ) -> None:
        if not repo:
            category = getattr(interaction.channel, "category", None)
            repo = repo_from_category(category.name if category else None)
        await self._run(interaction, FetchDocs(target=repo, path=path))

    @app_commands.guild_only()
    @app_commands.command(name="feature-request", description="Submit a prioritised feature request.")
    @app_commands.describe(title="Short title", description="What should change and why", priority="How urgent it is")
    @app_commands.choices(priority=PRIORITY_CHOICES)
    async def feature_request(
        self,
        interaction: discord.Interaction,
        title: str,
        description: str,
        priority: app_commands.Choice[str],
    ) -> None:
        await self._run(interaction, FeatureRequest(title=title, description=description, priority=priority.value))

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="setup", description="Create missing roles, categories and channels from the configuration.")
    async def setup_server(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, AdminSetup())

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="addrepo", description="Add a repository category to the configuration.")
    @app_commands.describe(name="Repository name", visibility="public or private")
    @app_commands.choices(visibility=[
        app_commands.Choice(name="Public", value="public"),
        app_commands.Choice(name="Private", value="private"),
    ])
    async def addrepo(
        self,
        interaction: discord.Interaction,
        name: str,
        visibility: Optional[app_commands.Choice[str]] = None,
    ) -> None:
        private = visibility is not None and visibility.value == "private"
        await self._run(interaction, AdminAddRepo(repo=name, private=private), ephemeral=True)

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="removerepo", description="Remove a repository from the configuration.")
    @app_commands.describe(prefix="Channel prefix of the repository, e.g. qiflow")
    async def removerepo(self, interaction: discord.Interaction, prefix: str) -> None:
        await self._run(interaction, AdminRemoveRepo(prefix=prefix.lower()), ephemeral=True)

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="addrole", description="Add a role to the configuration.")
    @app_commands.describe(name="Role name", color="Hex colour, e.g. #00FF00")
    async def addrole(
        self,
        interaction: discord.Interaction,
        name: str,
        color: str,
        mentionable: bool = False,
        hoisted: bool = False,
    ) -> None:
        await self._run(
            interaction,
            AdminAddRole(role=name, color=color, mentionable=mentionable, hoist=hoisted),
            ephemeral=True,
        )

    @app_commands.guild_only()
    @app_commands.command(name="listrepos", description="List configured repositories.")
    async def listrepos(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, ListRepos())

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="purge", description="Delete messages from a user or webhook in this channel.")
    @app_commands.describe(user="User to purge", webhook="Webhook or integration name to purge")
    async def purge(
        self,
        interaction: discord.Interaction,
        user: Optional[discord.User] = None,
        webhook: Optional[str] = None,
    ) -> None:
        target = str(user.id) if user else webhook
        await self._run(interaction, Purge(target=target), ephemeral=True)

    @purge.autocomplete("webhook")
    async def purge_webhook_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        channel = interaction.channel
        if channel is None or not hasattr(channel, "history"):
            return []
        names: List[str] = []
        async for message in channel.history(limit=100):
            if (message.webhook_id or message.author.bot) and message.author.name not in names:
                names.append(message.author.name)
        needle = current.lower()
        return [app_commands.Choice(name=n, value=n) for n in names if needle in n.lower()][:25]

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="purge-all", description="Delete all recent messages in this channel.")
    @app_commands.describe(limit=f"Maximum messages to delete (default {PURGE_ALL_DEFAULT_LIMIT}, max {PURGE_ALL_MAX_LIMIT})")
    async def purge_all(
        self,
        interaction: discord.Interaction,
        limit: app_commands.Range[int, 1, PURGE_ALL_MAX_LIMIT] = PURGE_ALL_DEFAULT_LIMIT,
    ) -> None:
        await self._run(interaction, PurgeAll(limit=limit), ephemeral=True)

    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    @app_commands.command(name="reload", description="Re-read the permissions and structure files.")
    async def reload(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Reload(), ephemeral=True)

    @app_commands.guild_only()
    @app_commands.command(name="clear", description="Reset the assistant conversation for this channel.")
    async def clear(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Clear(), ephemeral=True)

    @app_commands.command(name="ping", description="Check that the bot is alive.")
    async def ping(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Ping(), ephemeral=True)

    @app_commands.command(name="help", description="Show what the bot can do.")
    async def help(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Help(), ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(CommandsCog(bot))
