from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from .errors import BridgeError
from .utils import error_embed, safe_response

log = logging.getLogger("repobridge.error_handlers")

GENERIC_FAILURE = "Something went wrong running that command."


class ErrorHandler(commands.Cog):
    """Last-resort handling for prefix and slash command errors.

    Normal command flows report their own failures through the router; this
    only sees what escapes it.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._previous_tree_handler = None

    async def cog_load(self) -> None:
        self._previous_tree_handler = self.bot.tree.on_error
        self.bot.tree.on_error = self.on_app_command_error

    async def cog_unload(self) -> None:
        if self._previous_tree_handler is not None:
            self.bot.tree.on_error = self._previous_tree_handler

    @commands.Cog.listener()
    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        original = getattr(error, "original", error)
        if isinstance(original, BridgeError):
            await safe_response(ctx, embed=error_embed(original.user_message))
            return
        log.exception("Unexpected error in command %s", ctx.command, exc_info=error)
        await safe_response(ctx, embed=error_embed(GENERIC_FAILURE))

    async def on_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.MissingPermissions):
            await safe_response(interaction, embed=error_embed("You don't have permission to use this command."), ephemeral=True)
            return

        if isinstance(error, app_commands.CommandOnCooldown):
            await safe_response(
                interaction,
                embed=error_embed(f"This command is on cooldown. Try again in {error.retry_after:.1f}s"),
                ephemeral=True,
            )
            return

        if isinstance(error, app_commands.BotMissingPermissions):
            await safe_response(interaction, embed=error_embed("The bot lacks required permissions to run this command."), ephemeral=True)
            return

        original = getattr(error, "original", error)
        if isinstance(original, BridgeError):
            await safe_response(interaction, embed=error_embed(original.user_message), ephemeral=True)
            return

        log.exception("Unexpected error in app command %s", interaction.command, exc_info=error)
        await safe_response(interaction, embed=error_embed(GENERIC_FAILURE), ephemeral=True)


async def setup_error_handlers(bot: commands.Bot) -> None:
    await bot.add_cog(ErrorHandler(bot))
