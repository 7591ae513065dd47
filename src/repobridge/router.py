"""
Command routing.

Inbound chat messages and slash commands are classified into one of a closed
set of command variants. Classification is pure; ``CommandRouter.execute``
checks permissions under the variant's stable name, runs it, and turns any
classified failure into a short reply.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

import discord

from .constants import (
    APPROVAL_PRIORITIES,
    CONTINUATION_PAUSE_SECONDS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_SEGMENTS,
    FAILURE_MARKER,
    ISSUE_LABELS,
    ISSUE_MIN_LENGTH,
    ISSUE_TITLE_MAX,
    PRIORITY_EMOJI,
    PRIORITY_LEVELS,
    PURGE_ALL_DEFAULT_LIMIT,
    PURGE_ALL_MAX_LIMIT,
    PURGE_DELETE_PAUSE_SECONDS,
    SUCCESS_MARKER,
    WORKING_MARKER,
)
from .errors import (
    BridgeError,
    PermissionDenied,
    ReconciliationAborted,
    ValidationFailed,
)
from .github import issue_body
from .interfaces import AssistantClient, ChatPlatformClient, IssueTrackerClient, Responder
from .assistant import build_prompt
from .permissions import Actor, PermissionEvaluator
from .provisioning.engine import Reconciler
from .provisioning.store import StructureStore, new_role
from .repositories import RepositoryDirectory, issue_kind_for_channel, repo_from_category
from .utils import paginate, markdown_to_chat, strip_mentions

log = logging.getLogger("repobridge.router")

_README_RE = re.compile(r"readme\s+(\S+)(?:\s+(\S+))?", re.IGNORECASE)
_MENTION_ID_RE = re.compile(r"^<@!?(\d+)>$")

Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Command variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchDocs:
    name: ClassVar[str] = "readme"
    target: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class CreateIssue:
    name: ClassVar[str] = "issue"
    repo: str
    kind: str
    content: str


@dataclass(frozen=True)
class AssistantChat:
    name: ClassVar[str] = "chat"
    text: str
    repo: Optional[str] = None


@dataclass(frozen=True)
class AdminSetup:
    name: ClassVar[str] = "setup"


@dataclass(frozen=True)
class AdminAddRepo:
    name: ClassVar[str] = "addrepo"
    repo: str = ""
    private: bool = False


@dataclass(frozen=True)
class AdminRemoveRepo:
    name: ClassVar[str] = "removerepo"
    prefix: str = ""


@dataclass(frozen=True)
class AdminAddRole:
    name: ClassVar[str] = "addrole"
    role: str = ""
    color: str = ""
    mentionable: bool = False
    hoist: bool = False


@dataclass(frozen=True)
class ListRepos:
    name: ClassVar[str] = "listrepos"


@dataclass(frozen=True)
class FeatureRequest:
    name: ClassVar[str] = "feature-request"
    title: str
    description: str
    priority: str = "medium"
    repo: Optional[str] = None


@dataclass(frozen=True)
class Purge:
    name: ClassVar[str] = "purge"
    target: Optional[str] = None


@dataclass(frozen=True)
class PurgeAll:
    name: ClassVar[str] = "purge-all"
    limit: int = PURGE_ALL_DEFAULT_LIMIT


@dataclass(frozen=True)
class Reload:
    name: ClassVar[str] = "reload"


@dataclass(frozen=True)
class Clear:
    name: ClassVar[str] = "clear"


@dataclass(frozen=True)
class Ping:
    name: ClassVar[str] = "ping"


@dataclass(frozen=True)
class Help:
    name: ClassVar[str] = "help"


@dataclass(frozen=True)
class NoOp:
    name: ClassVar[str] = "noop"


Command = Union[
    FetchDocs,
    CreateIssue,
    AssistantChat,
    AdminSetup,
    AdminAddRepo,
    AdminRemoveRepo,
    AdminAddRole,
    ListRepos,
    FeatureRequest,
    Purge,
    PurgeAll,
    Reload,
    Clear,
    Ping,
    Help,
    NoOp,
]

USAGE = {
    "addrepo": "Usage: `{p}addrepo <repo-name> [public|private]`\nExample: `{p}addrepo MyProject` or `{p}addrepo QiFlow private`",
    "removerepo": "Usage: `{p}removerepo <repo-prefix>`\nExample: `{p}removerepo myproject`",
    "addrole": "Usage: `{p}addrole <role-name> <color-hex> [yes/no mentionable] [yes/no hoisted]`\nExample: `{p}addrole Contributor #00FF00 yes no`",
    "readme": "Please specify a repository.\nUsage: `@bot readme <repo-name>`\nExample: `@bot readme QiFlow`",
}


def _yes(value: Optional[str]) -> bool:
    return (value or "").lower() in {"yes", "y", "true"}


def parse_prefix_command(text: str, prefix: str) -> Command:
    """Map ``!name args...`` onto a command variant; unknown names are a no-op."""
    args = text[len(prefix):].strip().split()
    if not args:
        return NoOp()
    cmd = args.pop(0).lower()
    if cmd == "setup":
        return AdminSetup()
    if cmd == "addrepo":
        return AdminAddRepo(
            repo=args[0] if args else "",
            private=len(args) > 1 and args[1].lower() == "private",
        )
    if cmd == "removerepo":
        return AdminRemoveRepo(prefix=args[0].lower() if args else "")
    if cmd == "addrole":
        return AdminAddRole(
            role=args[0] if args else "",
            color=args[1] if len(args) > 1 else "",
            mentionable=_yes(args[2] if len(args) > 2 else None),
            hoist=_yes(args[3] if len(args) > 3 else None),
        )
    if cmd == "listrepos":
        return ListRepos()
    if cmd == "purge":
        return Purge(target=" ".join(args) or None)
    if cmd == "purge-all":
        if not args:
            return PurgeAll()
        # anything that is not a positive count is rejected by the handler
        return PurgeAll(limit=int(args[0]) if args[0].isdigit() else 0)
    if cmd == "reload":
        return Reload()
    if cmd in ("clear", "reset"):
        return Clear()
    if cmd == "ping":
        return Ping()
    if cmd == "help":
        return Help()
    return NoOp()


def classify_message(
    content: str,
    *,
    mentioned: bool,
    prefix: str,
    channel_name: Optional[str],
    category_name: Optional[str],
    directory: RepositoryDirectory,
) -> Command:
    """Classify a chat message. First match wins:

    1. mention + "readme"                   -> FetchDocs
    2. mention in a repo feature/bug channel -> CreateIssue
    3. any other mention                     -> AssistantChat
    4. leading prefix, no mention            -> prefix command table
    """
    if mentioned:
        text = strip_mentions(content)
        if "readme" in text.lower():
            match = _README_RE.search(text)
            target = match.group(1) if match else None
            path = match.group(2) if match else None
            target = target or repo_from_category(category_name) or directory.repo_for_channel(channel_name)
            return FetchDocs(target=target, path=path)
        repo = directory.repo_for_channel(channel_name)
        kind = issue_kind_for_channel(channel_name)
        if repo and kind:
            return CreateIssue(repo=repo, kind=kind, content=text)
        return AssistantChat(text=text, repo=repo)
    if prefix and content.startswith(prefix):
        return parse_prefix_command(content, prefix)
    return NoOp()


def draft_issue(
    content: str,
    min_length: int = ISSUE_MIN_LENGTH,
    title_max: int = ISSUE_TITLE_MAX,
) -> Tuple[str, str]:
    """Split a message into (title, body).

    The first line, cut to ``title_max``, is the title. The remaining lines
    are the body; a single-line message is used whole as the body.
    """
    text = content.strip()
    if len(text) < min_length:
        raise ValidationFailed(
            "Please provide more details for the issue. Format: @bot <issue title>\n<description>"
        )
    lines = text.split("\n")
    title = lines[0][:title_max]
    body = "\n".join(lines[1:]) if len(lines) > 1 else text
    return title, body


def render_help(is_admin: bool, prefix: str, bot_name: str) -> str:
    p = prefix
    parts = [
        "# Help",
        f"**Talk to me:** `@{bot_name} <your question>`. In repository channels I know which repo you mean.",
        f"`@{bot_name} readme <repo>` fetches a repository README.",
        f"`@{bot_name} readme <repo> <path>` fetches another document, e.g. `docs/INSTALL.md`.",
        "",
        "## Issues",
        f"Tag me in a `feature-requests` or `bug-reports` channel:\n`@{bot_name} <issue title>\n<details>`",
        "",
        "## Commands",
        f"`{p}ping` - latency check",
        f"`{p}help` - this message",
        f"`{p}listrepos` - configured repositories",
    ]
    if is_admin:
        parts += [
            "",
            "## Admin",
            f"`{p}setup` - create missing roles, categories and channels from the configuration",
            f"`{p}addrepo <name> [public|private]` - add a repository category",
            f"`{p}removerepo <prefix>` - remove a repository from the configuration",
            f"`{p}addrole <name> <color> [mentionable] [hoisted]` - add a role to the configuration",
            f"`{p}purge [user]` - delete a user's messages in this channel (defaults to me)",
            f"`{p}purge-all [limit]` - delete recent messages in this channel (max {PURGE_ALL_MAX_LIMIT})",
            f"`{p}clear` - reset the conversation for this channel",
            f"`{p}reload` - re-read the permissions and structure files",
        ]
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass
class Invocation:
    """Everything a handler needs about where a command came from."""
    actor: Actor
    guild_id: Optional[int]
    channel_name: Optional[str]
    responder: Responder
    category_name: Optional[str] = None
    author_tag: str = ""
    channel_id: int = 0
    guild: Any = None
    channel: Any = None
    bot_user: Any = None
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class RouterSettings:
    command_prefix: str = "!"
    github_owner: str = ""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_segments: int = DEFAULT_MAX_SEGMENTS
    issue_min_length: int = ISSUE_MIN_LENGTH
    issue_title_max: int = ISSUE_TITLE_MAX
    assistant_admin_role: str = "Founder"
    extra_prefixes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> "RouterSettings":
        return cls(
            command_prefix=settings.command_prefix,
            github_owner=settings.github_owner,
            chunk_size=settings.message_chunk_size,
            max_segments=settings.max_continuation_segments,
            issue_min_length=settings.issue_min_length,
            issue_title_max=settings.issue_title_max,
            assistant_admin_role=settings.assistant_admin_role,
            extra_prefixes=dict(settings.repo_prefixes),
        )


# approver(request, invocation) -> approver's tag, or None if not approved in time
Approver = Callable[[FeatureRequest, Invocation], Awaitable[Optional[str]]]
PlatformFactory = Callable[[Any], ChatPlatformClient]


def purge_matcher(target: Optional[str], guild: Any, bot_user: Any) -> Tuple[str, Callable[[Any], bool]]:
    """Resolve a purge target to (label, message predicate).

    Accepts a mention, a user id, or a username/tag/display name. Names that
    match no member fall back to webhook and bot author names.
    """
    if not target:
        bot_id = bot_user.id
        return bot_user.name, lambda m: m.author.id == bot_id

    wanted = target.strip()
    mention = _MENTION_ID_RE.match(wanted)
    if mention or wanted.isdigit():
        user_id = int(mention.group(1) if mention else wanted)
        return wanted, lambda m: m.author.id == user_id

    lowered = wanted.lower()
    for member in getattr(guild, "members", None) or []:
        if lowered in {
            member.name.lower(),
            str(member).lower(),
            member.display_name.lower(),
        }:
            member_id = member.id
            return member.name, lambda m: m.author.id == member_id

    def _webhook_author(m: Any) -> bool:
        is_automated = bool(getattr(m, "webhook_id", None)) or bool(getattr(m.author, "bot", False))
        return is_automated and lowered in m.author.name.lower()

    return wanted, _webhook_author


class CommandRouter:
    def __init__(
        self,
        evaluator: PermissionEvaluator,
        structures: StructureStore,
        reconciler: Reconciler,
        tracker: IssueTrackerClient,
        assistant: AssistantClient,
        platform_factory: PlatformFactory,
        settings: Optional[RouterSettings] = None,
        directory: Optional[RepositoryDirectory] = None,
        approver: Optional[Approver] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.evaluator = evaluator
        self.structures = structures
        self.reconciler = reconciler
        self.tracker = tracker
        self.assistant = assistant
        self.platform_factory = platform_factory
        self.settings = settings or RouterSettings()
        self.directory = directory or RepositoryDirectory(self.settings.extra_prefixes)
        self.approver = approver
        self._sleep = sleep
        self._setup_running: Set[int] = set()
        self._handlers: Dict[type, Callable[[Any, Invocation], Awaitable[None]]] = {
            FetchDocs: self._fetch_docs,
            CreateIssue: self._create_issue,
            AssistantChat: self._assistant_chat,
            AdminSetup: self._setup,
            AdminAddRepo: self._add_repo,
            AdminRemoveRepo: self._remove_repo,
            AdminAddRole: self._add_role,
            ListRepos: self._list_repos,
            FeatureRequest: self._feature_request,
            Purge: self._purge,
            PurgeAll: self._purge_all,
            Reload: self._reload,
            Clear: self._clear,
            Ping: self._ping,
            Help: self._help,
        }

    async def refresh_directory(self) -> RepositoryDirectory:
        doc = await self.structures.load()
        self.directory = RepositoryDirectory.from_document(doc, self.settings.extra_prefixes)
        return self.directory

    def classify(
        self, content: str, *, mentioned: bool, channel_name: Optional[str], category_name: Optional[str]
    ) -> Command:
        return classify_message(
            content,
            mentioned=mentioned,
            prefix=self.settings.command_prefix,
            channel_name=channel_name,
            category_name=category_name,
            directory=self.directory,
        )

    async def execute(self, command: Command, inv: Invocation) -> None:
        if isinstance(command, NoOp):
            return
        responder = inv.responder
        try:
            self.evaluator.require(inv.actor, inv.channel_name, inv.guild_id, command.name)
            await self._handlers[type(command)](command, inv)
        except PermissionDenied as e:
            await self._safe_reply(responder, f"{FAILURE_MARKER} {e.reason}")
        except ValidationFailed as e:
            log.debug("Rejected %s: %s", command.name, e.reason)
            await self._safe_reply(responder, f"{FAILURE_MARKER} {e.reason}")
        except ReconciliationAborted as e:
            log.warning("Setup aborted in guild %s: %s", inv.guild_id, e.cause)
            await self._safe_reply(
                responder,
                f"{FAILURE_MARKER} {e.user_message}\n\nCompleted before the failure:\n{e.report.summary()}",
            )
        except BridgeError as e:
            log.warning("%s failed: %s", command.name, e)
            await self._safe_reply(responder, f"{FAILURE_MARKER} {e.user_message}")
        except Exception:
            log.exception("Unexpected error running %s in guild %s", command.name, inv.guild_id)
            await self._safe_reply(responder, f"{FAILURE_MARKER} Something went wrong running `{command.name}`.")

    async def _safe_reply(self, responder: Responder, content: str) -> None:
        try:
            await responder.reply(content)
        except discord.HTTPException as e:
            log.warning("Could not send reply: %s", e)

    @asynccontextmanager
    async def _working(self, responder: Responder) -> AsyncIterator[None]:
        await responder.mark(WORKING_MARKER)
        try:
            yield
        except BaseException:
            await responder.clear_marks()
            await responder.mark(FAILURE_MARKER)
            raise
        await responder.clear_marks()
        await responder.mark(SUCCESS_MARKER)

    async def _send_long(
        self,
        responder: Responder,
        text: str,
        source_url: Optional[str] = None,
        header: Optional[str] = None,
    ) -> None:
        size = self.settings.chunk_size
        if header and len(header) + 2 + len(text) <= size:
            await responder.reply(f"{header}\n\n{text}")
            return
        pages = paginate(text, source_url, size, self.settings.max_segments)
        if header:
            await responder.reply(header)
        else:
            await responder.reply(pages.pop(0))
        for page in pages:
            await responder.send(page)
            await self._sleep(CONTINUATION_PAUSE_SECONDS)

    def _is_admin(self, actor: Actor) -> bool:
        return self.evaluator.is_admin(actor) or self.settings.assistant_admin_role in actor.role_names

    # -- handlers ----------------------------------------------------------

    async def _fetch_docs(self, cmd: FetchDocs, inv: Invocation) -> None:
        if not cmd.target:
            raise ValidationFailed(USAGE["readme"])
        owner = self.settings.github_owner
        if cmd.path:
            path = cmd.path.lstrip("/")
            label = path
            source_url = f"https://github.com/{owner}/{cmd.target}/blob/HEAD/{path}"
            header = f"📄 **{path} from {owner}/{cmd.target}**"
        else:
            label = "README"
            source_url = f"https://github.com/{owner}/{cmd.target}#readme"
            header = f"📄 **README for {owner}/{cmd.target}**"
        async with self._working(inv.responder):
            if cmd.path:
                text = await self.tracker.fetch_file(owner, cmd.target, path)
            else:
                text = await self.tracker.fetch_readme(owner, cmd.target)
        if not text.strip():
            raise ValidationFailed(f"The {label} for {cmd.target} is empty.")
        await self._send_long(inv.responder, markdown_to_chat(text), source_url=source_url, header=header)
        log.info("Fetched %s for %s in #%s", label, cmd.target, inv.channel_name)

    async def _create_issue(self, cmd: CreateIssue, inv: Invocation) -> None:
        title, body = draft_issue(cmd.content, self.settings.issue_min_length, self.settings.issue_title_max)
        async with self._working(inv.responder):
            issue = await self.tracker.create_issue(
                self.settings.github_owner,
                cmd.repo,
                title,
                issue_body(body, inv.author_tag),
                ISSUE_LABELS[cmd.kind],
            )
        await inv.responder.reply(
            f"{SUCCESS_MARKER} Created GitHub {cmd.kind} issue: {issue.url}\n**#{issue.number}**: {issue.title}"
        )

    async def _assistant_chat(self, cmd: AssistantChat, inv: Invocation) -> None:
        if not cmd.text:
            raise ValidationFailed("Ask me something after the mention.")
        prompt = build_prompt(cmd.text, cmd.repo, self._is_admin(inv.actor))
        async with self._working(inv.responder):
            response = await self.assistant.invoke(prompt, cmd.repo)
        await self._send_long(inv.responder, response)

    async def _setup(self, cmd: AdminSetup, inv: Invocation) -> None:
        guild_id = inv.guild_id or 0
        if guild_id in self._setup_running:
            raise ValidationFailed("Setup is already running for this server.")
        self._setup_running.add(guild_id)
        try:
            doc = await self.structures.load()
            platform = self.platform_factory(inv.guild)
            await inv.responder.reply("Starting server setup...")
            async with self._working(inv.responder):
                report = await self.reconciler.run(doc, platform)
        finally:
            self._setup_running.discard(guild_id)
        self.directory = RepositoryDirectory.from_document(doc, self.settings.extra_prefixes)
        await inv.responder.reply(f"{SUCCESS_MARKER} Server setup complete!\n{report.summary()}")

    async def _add_repo(self, cmd: AdminAddRepo, inv: Invocation) -> None:
        if not cmd.repo:
            raise ValidationFailed(USAGE["addrepo"].format(p=self.settings.command_prefix))
        category = await self.structures.add_repository(cmd.repo, cmd.private)
        await self.refresh_directory()
        channels = "\n".join(f"• #{c.name}" for c in category.channels)
        p = self.settings.command_prefix
        await inv.responder.reply(
            f"{SUCCESS_MARKER} Repository **{cmd.repo}** added to configuration "
            f"({'Private' if cmd.private else 'Public'}).\n\n**Channels:**\n{channels}\n\n"
            f"Run `{p}setup` to create the channels in Discord."
        )

    async def _remove_repo(self, cmd: AdminRemoveRepo, inv: Invocation) -> None:
        if not cmd.prefix:
            raise ValidationFailed(USAGE["removerepo"].format(p=self.settings.command_prefix))
        removed = await self.structures.remove_repository(cmd.prefix)
        await self.refresh_directory()
        await inv.responder.reply(
            f"{SUCCESS_MARKER} Repository configuration removed: {removed.name}\n\n"
            "**Note**: this only removes it from the configuration. Existing channels are left in place."
        )

    async def _add_role(self, cmd: AdminAddRole, inv: Invocation) -> None:
        if not cmd.role or not cmd.color:
            raise ValidationFailed(USAGE["addrole"].format(p=self.settings.command_prefix))
        role = await self.structures.add_role(new_role(cmd.role, cmd.color, cmd.mentionable, cmd.hoist))
        await inv.responder.reply(
            f"{SUCCESS_MARKER} Role \"{role.name}\" added to configuration!\n"
            f"**Color**: {role.color}\n"
            f"**Mentionable**: {'Yes' if role.mentionable else 'No'}\n"
            f"**Hoisted**: {'Yes' if role.hoist else 'No'}\n\n"
            f"Run `{self.settings.command_prefix}setup` to create the role in Discord."
        )

    async def _list_repos(self, cmd: ListRepos, inv: Invocation) -> None:
        entries = await self.structures.list_repositories()
        if not entries:
            await inv.responder.reply("No repositories configured.")
            return
        lines: List[str] = ["**Configured Repositories:**", ""]
        for entry in entries:
            lines.append(f"• **{entry.category}** ({'Private' if entry.private else 'Public'})")
            lines.append(f"  Prefix: `{entry.prefix}` · {entry.channel_count} channels")
        await self._send_long(inv.responder, "\n".join(lines))

    async def _feature_request(self, cmd: FeatureRequest, inv: Invocation) -> None:
        if cmd.priority not in PRIORITY_LEVELS:
            raise ValidationFailed(f"Priority must be one of: {', '.join(PRIORITY_LEVELS)}")
        repo = cmd.repo or self.directory.repo_for_channel(inv.channel_name) or repo_from_category(inv.category_name)
        if not repo:
            raise ValidationFailed("Could not detect the repository. Use this command in a project channel.")

        approved_by: Optional[str] = None
        if cmd.priority in APPROVAL_PRIORITIES:
            if self.approver is None:
                raise ValidationFailed(f"{cmd.priority.title()} requests need admin approval, which is unavailable here.")
            approved_by = await self.approver(cmd, inv)
            if approved_by is None:
                await inv.responder.send(
                    f"⏰ The {cmd.priority} request **{cmd.title}** was not approved within 24 hours. No issue was created."
                )
                return

        async with self._working(inv.responder):
            issue = await self.tracker.create_feature_request(
                repo, cmd.title, cmd.description, cmd.priority, inv.author_tag, approved_by
            )
        emoji = PRIORITY_EMOJI.get(cmd.priority, "")
        await inv.responder.reply(
            f"{SUCCESS_MARKER} {emoji} Created {cmd.priority} feature request: {issue.url}\n"
            f"**#{issue.number}**: {issue.title}"
        )

    async def _purge(self, cmd: Purge, inv: Invocation) -> None:
        if inv.channel is None:
            raise ValidationFailed("Purge needs a text channel.")
        label, matches = purge_matcher(cmd.target, inv.guild, inv.bot_user)
        await inv.responder.reply(f"🗑️ Deleting all messages from **{label}** in this channel...")

        targets = [m async for m in inv.channel.history(limit=None) if matches(m)]
        deleted = await self._delete_each(targets)

        log.info("Purged %d messages from %s in #%s", deleted, label, inv.channel_name)
        await inv.responder.send(f"{SUCCESS_MARKER} Deleted {deleted} message(s) from **{label}** in this channel.")

    async def _purge_all(self, cmd: PurgeAll, inv: Invocation) -> None:
        if inv.channel is None:
            raise ValidationFailed("Purge needs a text channel.")
        if not 1 <= cmd.limit <= PURGE_ALL_MAX_LIMIT:
            raise ValidationFailed(f"The limit must be a number between 1 and {PURGE_ALL_MAX_LIMIT}.")
        targets = [m async for m in inv.channel.history(limit=cmd.limit)]
        await inv.responder.reply(f"🗑️ Deleting up to **{cmd.limit}** messages in this channel...")
        deleted = await self._delete_each(targets)

        log.info("Purged %d messages from #%s", deleted, inv.channel_name)
        await inv.responder.send(f"{SUCCESS_MARKER} Deleted {deleted} message(s) from this channel.")

    async def _delete_each(self, messages: List[Any]) -> int:
        """Delete one at a time with a pause; failures are logged and skipped."""
        deleted = 0
        for message in messages:
            try:
                await message.delete()
            except discord.HTTPException as e:
                log.warning("Could not delete message %s: %s", message.id, e)
                continue
            deleted += 1
            await self._sleep(PURGE_DELETE_PAUSE_SECONDS)
        return deleted

    async def _reload(self, cmd: Reload, inv: Invocation) -> None:
        # a failed read raises and leaves the previous configuration in place
        config = self.evaluator.store.reload()
        directory = await self.refresh_directory()
        await inv.responder.reply(
            f"{SUCCESS_MARKER} Configuration reloaded: {len(config.per_guild)} server entries, "
            f"{len(directory)} repository prefixes."
        )

    async def _clear(self, cmd: Clear, inv: Invocation) -> None:
        self.assistant.clear_conversation(inv.channel_id)
        await inv.responder.reply(f"{SUCCESS_MARKER} Conversation history cleared for this channel.")

    async def _ping(self, cmd: Ping, inv: Invocation) -> None:
        latency = "unknown" if inv.latency_ms is None else f"{inv.latency_ms}ms"
        await inv.responder.reply(f"Pong! 🏓 Latency: {latency}")

    async def _help(self, cmd: Help, inv: Invocation) -> None:
        bot_name = getattr(inv.bot_user, "display_name", None) or "bot"
        text = render_help(self._is_admin(inv.actor), self.settings.command_prefix, bot_name)
        await self._send_long(inv.responder, text)
