from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import discord
from discord.ext import commands

from .constants import (
    COLORS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_SEGMENTS,
    MAX_EMBED_DESCRIPTION,
    MAX_EMBED_TITLE,
)

log = logging.getLogger("repobridge.utils")

_MENTION_RE = re.compile(r"<@!?\d+>")
_HEADER_3_RE = re.compile(r"^### (.*)$", re.MULTILINE)
_HEADER_2_RE = re.compile(r"^## (.*)$", re.MULTILINE)
_HEADER_1_RE = re.compile(r"^# (.*)$", re.MULTILINE)
_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")


def safe_embed(title: str, description: str, color: int = COLORS["default"]) -> discord.Embed:
    """Create an embed with safe length limits."""
    if len(title) > MAX_EMBED_TITLE:
        title = title[:MAX_EMBED_TITLE - 1] + "…"
    if len(description) > MAX_EMBED_DESCRIPTION:
        description = description[:MAX_EMBED_DESCRIPTION - 1] + "…"

    return discord.Embed(title=title, description=description, color=color)


def error_embed(message: str) -> discord.Embed:
    return safe_embed("Error", message, COLORS["error"])


def strip_mentions(text: str) -> str:
    """Remove user mentions (``<@123>`` / ``<@!123>``) and surrounding whitespace."""
    return _MENTION_RE.sub("", text).strip()


@dataclass(frozen=True)
class ChunkedText:
    segments: list[str]
    truncated: bool


def chunk_text(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    max_segments: int = DEFAULT_MAX_SEGMENTS,
) -> ChunkedText:
    """Split text into fixed-size segments, keeping at most ``max_segments``.

    Splits are hard cuts at ``size`` characters; no attempt is made to break
    on whitespace.
    """
    if size <= 0:
        raise ValueError("size must be positive")
    pieces = [text[i:i + size] for i in range(0, len(text), size)] or [""]
    return ChunkedText(segments=pieces[:max_segments], truncated=len(pieces) > max_segments)


def overflow_notice(url: Optional[str] = None) -> str:
    if not url:
        return "... (output truncated)"
    return f"... Content truncated. See the full source at {url}"


def paginate(
    text: str,
    source_url: Optional[str] = None,
    size: int = DEFAULT_CHUNK_SIZE,
    max_segments: int = DEFAULT_MAX_SEGMENTS,
) -> list[str]:
    """Segments ready to send, with a truncation notice appended past the cap."""
    chunked = chunk_text(text, size, max_segments)
    messages = list(chunked.segments)
    if chunked.truncated:
        messages.append(overflow_notice(source_url))
    return messages


def markdown_to_chat(markdown: str) -> str:
    """Convert GitHub markdown into something Discord renders well.

    - headers become bold (underlined for level 1 and 2)
    - HTML comments are dropped
    - images become plain links
    """
    text = _HEADER_3_RE.sub(r"**\1**", markdown)
    text = _HEADER_2_RE.sub(r"**__\1__**", text)
    text = _HEADER_1_RE.sub(r"**__\1__**", text)
    text = _HTML_COMMENT_RE.sub("", text)
    text = _IMAGE_RE.sub(r"[\1](\2)", text)
    return text.strip()


async def safe_response(
    target: discord.Interaction | commands.Context,
    content: str | None = None,
    embed: discord.Embed | None = None,
    ephemeral: bool = False,
) -> bool:
    """Respond to an interaction or context, logging instead of raising on HTTP errors."""
    try:
        if isinstance(target, discord.Interaction):
            if target.response.is_done():
                await target.followup.send(content=content, embed=embed, ephemeral=ephemeral)
            else:
                await target.response.send_message(content=content, embed=embed, ephemeral=ephemeral)
        else:
            await target.reply(content=content, embed=embed)
        return True
    except discord.HTTPException as e:
        log.error("Failed to send response: %s", e)
        return False
