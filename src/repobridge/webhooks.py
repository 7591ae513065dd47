"""
Repository webhook receiver.

``WebhookNotifier.handle_event`` is the transport-independent contract; the
aiohttp application below only adapts requests onto it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import discord
import psutil
from aiohttp import web

from .constants import COLORS, COMMIT_TITLE_MAX, MAX_EMBED_DESCRIPTION, MAX_PUSH_COMMITS
from .errors import BridgeError
from .interfaces import NotificationTarget

log = logging.getLogger("repobridge.webhooks")

EVENT_HEADER = "X-GitHub-Event"
SIGNATURE_HEADER = "X-Hub-Signature-256"


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    expected = sign(secret, body).encode("ascii")
    return hmac.compare_digest(expected, signature.encode("utf-8", "surrogateescape"))


def push_channel_candidates(repo: str) -> List[str]:
    prefix = repo.lower()
    return [f"{prefix}-commits", f"{prefix}-github", "git-commits", "commits", "github"]


def release_channel_candidates(repo: str) -> List[str]:
    prefix = repo.lower()
    return [f"{prefix}-releases", f"{prefix}-announcements", "releases", "announcements"]


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def build_push_embed(payload: Dict[str, Any]) -> Optional[discord.Embed]:
    commits = payload.get("commits") or []
    if not commits:
        return None
    repo = payload["repository"]
    branch = str(payload.get("ref", "")).replace("refs/heads/", "")
    pusher = (payload.get("pusher") or {}).get("name", "unknown")

    embed = discord.Embed(
        title=f"📝 {_plural(len(commits), 'new commit')} to {repo['name']}",
        description=f"**Branch:** `{branch}`\n**Pushed by:** {pusher}",
        color=COLORS["default"],
        timestamp=discord.utils.utcnow(),
    )
    for commit in commits[:MAX_PUSH_COMMITS]:
        title = (commit.get("message") or "").split("\n")[0][:COMMIT_TITLE_MAX] or "(no message)"
        author = (commit.get("author") or {}).get("name", "unknown")
        embed.add_field(
            name=title,
            value=f"[`{str(commit.get('id', ''))[:7]}`]({commit.get('url', '')}) - {author}",
            inline=False,
        )
    extra = len(commits) - MAX_PUSH_COMMITS
    if extra > 0:
        embed.add_field(name=f"+{extra} more", value=f"And {_plural(extra, 'more commit')}", inline=False)
    embed.set_footer(text=repo.get("full_name", repo["name"]))
    return embed


def build_release_embed(payload: Dict[str, Any]) -> Optional[discord.Embed]:
    if payload.get("action") != "published":
        return None
    release = payload["release"]
    repo = payload["repository"]
    notes = release.get("body") or "No release notes provided"
    embed = discord.Embed(
        title=f"🚀 New Release: {release.get('name') or release['tag_name']}",
        description=notes[:MAX_EMBED_DESCRIPTION],
        url=release.get("html_url"),
        color=COLORS["success"],
    )
    embed.add_field(name="Tag", value=f"`{release['tag_name']}`", inline=True)
    embed.add_field(name="Repository", value=repo["name"], inline=True)
    embed.add_field(name="Author", value=(release.get("author") or {}).get("login", "unknown"), inline=True)
    embed.set_footer(text=repo.get("full_name", repo["name"]))
    published = release.get("published_at")
    if published:
        try:
            embed.timestamp = discord.utils.parse_time(published)
        except ValueError:
            log.debug("Unparseable published_at %r", published)
    return embed


class WebhookNotifier:
    def __init__(self, secret: str, target: Callable[[], Optional[NotificationTarget]]) -> None:
        self.secret = secret
        self._target = target
        if not secret:
            log.warning("WEBHOOK_SECRET not set; webhook signatures will not be verified")

    async def handle_event(self, event: Optional[str], body: bytes, signature: Optional[str]) -> int:
        if self.secret and not verify_signature(self.secret, body, signature):
            log.warning("Rejected webhook %s with missing or invalid signature", event)
            return 401

        try:
            payload = json.loads(body or b"{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            return 400
        if not isinstance(payload, dict):
            return 400

        if event == "push":
            build, candidates = build_push_embed, push_channel_candidates
        elif event == "release":
            build, candidates = build_release_embed, release_channel_candidates
        else:
            log.debug("Ignoring webhook event %s", event)
            return 200

        try:
            repo_name = payload["repository"]["name"]
            embed = build(payload)
        except (KeyError, TypeError, AttributeError):
            log.warning("Malformed %s payload", event)
            return 400
        if embed is None:
            return 200

        target = self._target()
        if target is None:
            log.warning("Webhook %s received before the bot is ready", event)
            return 503

        names = candidates(repo_name)
        channel = target.find_text_channel(names)
        if channel is None:
            log.warning("No channel for %s event on %s (tried: %s)", event, repo_name, ", ".join(names))
            return 200

        try:
            await target.post_embed(channel, embed)
        except (BridgeError, discord.HTTPException):
            log.exception("Failed to post %s notification for %s", event, repo_name)
            return 500
        log.info("Posted %s notification for %s to #%s", event, repo_name, getattr(channel, "name", channel))
        return 200


def create_app(notifier: WebhookNotifier, ready: Callable[[], bool] = lambda: True) -> web.Application:
    app = web.Application()
    started = time.monotonic()
    process = psutil.Process()

    async def webhook(request: web.Request) -> web.Response:
        provider = request.match_info["provider"]
        if provider != "github":
            return web.Response(status=404, text="Unknown provider")
        body = await request.read()
        status = await notifier.handle_event(
            request.headers.get(EVENT_HEADER),
            body,
            request.headers.get(SIGNATURE_HEADER),
        )
        return web.Response(status=status, text="OK" if status == 200 else "Rejected")

    async def health(_: web.Request) -> web.Response:
        return web.json_response({
            "ok": True,
            "service": "repobridge",
            "ready": ready(),
            "uptime_seconds": int(time.monotonic() - started),
            "rss_mb": round(process.memory_info().rss / (1024 * 1024), 1),
        })

    app.router.add_post("/webhook/{provider}", webhook)
    app.router.add_get("/healthz", health)
    return app


async def start_webhook_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("Webhook server listening on %s:%s", host, port)
    return runner
