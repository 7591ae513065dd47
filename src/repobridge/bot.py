from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional

import discord
from aiohttp import web
from discord.ext import commands

from .assistant import ClaudeAssistant
from .config import Settings
from .error_handlers import setup_error_handlers
from .github import GitHubClient
from .permissions import PermissionEvaluator, PermissionsStore, actor_from_member
from .platform import DiscordPlatform
from .provisioning.engine import ReconcileSettings, Reconciler
from .provisioning.rate_limiter import RateLimiter
from .provisioning.store import StructureStore
from .responders import MessageResponder
from .router import CommandRouter, Invocation, NoOp, RouterSettings
from .webhooks import WebhookNotifier, create_app, start_webhook_server

log = logging.getLogger("repobridge.bot")


class _CommandSyncManager:
    def __init__(self, bot: "RepoBridgeBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        if self.bot.settings.sync_guild_id:
            await self.sync_guild(self.bot.settings.sync_guild_id)
        else:
            await self.sync_global()

    async def sync_global(self) -> None:
        async with self._lock:
            await self.bot.tree.sync()
            log.info("Commands synced globally")
            self._log_tree()

    async def sync_guild(self, guild_id: int) -> None:
        async with self._lock:
            guild = discord.Object(id=guild_id)
            self.bot.tree.copy_global_to(guild=guild)
            await self.bot.tree.sync(guild=guild)
            log.info("Commands synced to guild %d", guild_id)
            self._log_tree()

    def _log_tree(self) -> None:
        cmds = self.bot.tree.get_commands()
        log.info("Tree commands loaded: %d", len(cmds))
        for c in cmds:
            log.info(" - /%s", c.name)


class RepoBridgeBot(commands.Bot):
    def __init__(
        self,
        settings: Settings,
        permissions: PermissionsStore,
        structures: StructureStore,
    ) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = True
        log.info("INTENTS: guilds=%s members=%s message_content=%s", intents.guilds, intents.members, intents.message_content)

        super().__init__(
            command_prefix=settings.command_prefix,
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        self.permissions = permissions
        self.structures = structures
        self.rate_limiter = RateLimiter()
        self.tracker = GitHubClient(
            token=settings.github_token,
            owner=settings.github_owner,
            base_url=settings.github_api_url,
        )
        self.assistant = ClaudeAssistant(
            command=settings.assistant_command,
            timeout=settings.assistant_timeout_seconds,
            repo_paths=settings.assistant_repo_paths,
        )
        self.reconciler = Reconciler(ReconcileSettings.from_settings(settings))
        self.router = CommandRouter(
            evaluator=PermissionEvaluator(permissions),
            structures=structures,
            reconciler=self.reconciler,
            tracker=self.tracker,
            assistant=self.assistant,
            platform_factory=lambda guild: DiscordPlatform(guild, self.rate_limiter),
            settings=RouterSettings.from_settings(settings),
        )
        self.notifier = WebhookNotifier(settings.webhook_secret, self.notification_target)
        self._webhook_runner: Optional[web.AppRunner] = None
        self._sync_mgr = _CommandSyncManager(self)

    async def setup_hook(self) -> None:
        await self.router.refresh_directory()
        log.info("Repository prefixes: %s", ", ".join(p for p, _ in self.router.directory.entries()) or "none")

        await setup_error_handlers(self)
        await self.load_extension("repobridge.cogs.commands")

        await self._sync_mgr.sync_startup()
        log.info("Command sync complete")

        if self.settings.webhook_enabled:
            app = create_app(self.notifier, ready=self.is_ready)
            self._webhook_runner = await start_webhook_server(
                app, self.settings.webhook_host, self.settings.webhook_port
            )

    async def close(self) -> None:
        try:
            if self._webhook_runner is not None:
                await self._webhook_runner.cleanup()
            await self.tracker.close()
        finally:
            await super().close()

    def notification_guild(self) -> Optional[discord.Guild]:
        if self.settings.webhook_guild_id:
            return self.get_guild(self.settings.webhook_guild_id)
        return self.guilds[0] if self.guilds else None

    def notification_target(self) -> Optional[DiscordPlatform]:
        if not self.is_ready():
            return None
        guild = self.notification_guild()
        if guild is None:
            return None
        return DiscordPlatform(guild, self.rate_limiter)

    async def on_ready(self) -> None:
        log.info("Logged in as %s; serving %d guild(s)", self.user, len(self.guilds))

    def invocation_from_message(self, message: discord.Message) -> Invocation:
        channel = message.channel
        category = getattr(channel, "category", None)
        return Invocation(
            actor=actor_from_member(message.author),
            guild_id=message.guild.id if message.guild else None,
            channel_name=getattr(channel, "name", None),
            responder=MessageResponder(message),
            category_name=category.name if category else None,
            author_tag=str(message.author),
            channel_id=channel.id,
            guild=message.guild,
            channel=channel,
            bot_user=self.user,
            latency_ms=round(self.latency * 1000) if math.isfinite(self.latency) else None,
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        channel = message.channel
        category = getattr(channel, "category", None)
        command = self.router.classify(
            message.content,
            mentioned=self.user is not None and self.user in message.mentions,
            channel_name=getattr(channel, "name", None),
            category_name=category.name if category else None,
        )
        if isinstance(command, NoOp):
            return
        log.debug("Routing %s from %s in #%s", command.name, message.author, getattr(channel, "name", "?"))
        await self.router.execute(command, self.invocation_from_message(message))
