from __future__ import annotations

import logging
from typing import List, Optional

import discord

log = logging.getLogger("repobridge.responders")


class MessageResponder:
    """Replies to a chat message and acknowledges with reactions."""

    def __init__(self, message: discord.Message) -> None:
        self.message = message
        self._marks: List[str] = []

    async def reply(self, content: Optional[str] = None, *, embed: Optional[discord.Embed] = None) -> None:
        await self.message.reply(content=content, embed=embed, mention_author=False)

    async def send(self, content: str) -> None:
        await self.message.channel.send(content)

    async def mark(self, marker: str) -> None:
        try:
            await self.message.add_reaction(marker)
            self._marks.append(marker)
        except discord.HTTPException as e:
            log.debug("Could not add reaction %s: %s", marker, e)

    async def clear_marks(self) -> None:
        me = self.message.guild.me if self.message.guild else None
        for marker in self._marks:
            try:
                if me is not None:
                    await self.message.remove_reaction(marker, me)
            except discord.HTTPException as e:
                log.debug("Could not remove reaction %s: %s", marker, e)
        self._marks.clear()


class InteractionResponder:
    """Replies to a slash command; the working marker defers the response."""

    def __init__(self, interaction: discord.Interaction, ephemeral: bool = False) -> None:
        self.interaction = interaction
        self.ephemeral = ephemeral

    async def reply(self, content: Optional[str] = None, *, embed: Optional[discord.Embed] = None) -> None:
        kwargs = {"content": content, "ephemeral": self.ephemeral}
        if embed is not None:
            kwargs["embed"] = embed
        if self.interaction.response.is_done():
            await self.interaction.followup.send(**kwargs)
        else:
            await self.interaction.response.send_message(**kwargs)

    async def send(self, content: str) -> None:
        if self.interaction.response.is_done():
            await self.interaction.followup.send(content, ephemeral=self.ephemeral)
        else:
            await self.interaction.response.send_message(content, ephemeral=self.ephemeral)

    async def mark(self, marker: str) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer(thinking=True, ephemeral=self.ephemeral)

    async def clear_marks(self) -> None:
        return None
