"""
Capability interfaces for the bridge's external collaborators.

The chat platform, the issue tracker and the assistant are consumed only
through these contracts so the reconciler, router and notifier can run
against in-memory fakes.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional, Protocol, Sequence, runtime_checkable

import discord

if TYPE_CHECKING:
    from .provisioning.spec import RoleSpec


@dataclass(frozen=True)
class LiveRole:
    id: int
    name: str


@dataclass(frozen=True)
class LiveCategory:
    id: int
    name: str


@dataclass(frozen=True)
class LiveChannel:
    id: int
    name: str
    parent_id: Optional[int]
    topic: str = ""


@dataclass
class LiveGuildState:
    """Read-only snapshot of a guild's structure."""
    everyone_id: int
    roles: List[LiveRole] = field(default_factory=list)
    categories: List[LiveCategory] = field(default_factory=list)
    channels: List[LiveChannel] = field(default_factory=list)

    def role_named(self, name: str) -> Optional[LiveRole]:
        for role in self.roles:
            if role.name == name:
                return role
        return None

    def channel_in(self, name: str, parent_id: int) -> Optional[LiveChannel]:
        for channel in self.channels:
            if channel.name == name and channel.parent_id == parent_id:
                return channel
        return None


@dataclass(frozen=True)
class ResolvedOverlay:
    """A permission overlay with its role reference resolved to a platform id."""
    target_id: int
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()


@dataclass(frozen=True)
class Issue:
    number: int
    url: str
    title: str


@runtime_checkable
class ChatPlatformClient(Protocol):
    """Structure-mutating calls used by the reconciler.

    Implementations raise ``PlatformRateLimited``, ``PlatformForbidden`` or
    ``PlatformResourceLimitReached`` so callers can tell them apart.
    """

    @abstractmethod
    async def snapshot(self) -> LiveGuildState:
        ...

    @abstractmethod
    async def create_role(self, spec: RoleSpec) -> LiveRole:
        ...

    @abstractmethod
    async def create_category(self, name: str, overlays: Sequence[ResolvedOverlay]) -> LiveCategory:
        ...

    @abstractmethod
    async def create_text_channel(
        self,
        name: str,
        parent_id: int,
        topic: str,
        overlays: Sequence[ResolvedOverlay],
    ) -> LiveChannel:
        ...

    @abstractmethod
    async def replace_overlays(self, target_id: int, overlays: Sequence[ResolvedOverlay]) -> None:
        ...


@runtime_checkable
class IssueTrackerClient(Protocol):
    @abstractmethod
    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: Sequence[str]
    ) -> Issue:
        ...

    @abstractmethod
    async def fetch_file(self, owner: str, repo: str, path: str) -> str:
        ...

    @abstractmethod
    async def fetch_readme(self, owner: str, repo: str) -> str:
        ...

    @abstractmethod
    async def create_feature_request(
        self,
        repo: str,
        title: str,
        body: str,
        priority: str,
        author: str,
        approved_by: Optional[str] = None,
    ) -> Issue:
        ...


@runtime_checkable
class AssistantClient(Protocol):
    @abstractmethod
    async def invoke(self, prompt: str, working_context: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def clear_conversation(self, channel_id: int) -> None:
        ...


@runtime_checkable
class Responder(Protocol):
    """Where replies to one inbound message or interaction go."""

    @abstractmethod
    async def reply(self, content: Optional[str] = None, *, embed: Optional[discord.Embed] = None) -> None:
        ...

    @abstractmethod
    async def send(self, content: str) -> None:
        ...

    @abstractmethod
    async def mark(self, marker: str) -> None:
        ...

    @abstractmethod
    async def clear_marks(self) -> None:
        ...


@runtime_checkable
class NotificationTarget(Protocol):
    """Where webhook notifications are posted."""

    @abstractmethod
    def find_text_channel(self, candidates: Sequence[str]) -> Optional[Any]:
        ...

    @abstractmethod
    async def post_embed(self, channel: Any, embed: discord.Embed) -> None:
        ...
