from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass

from ..constants import DEFAULT_ROLE_PERMISSIONS, REPOSITORY_MARKER
from ..errors import ConfigNotFound, ResourceNotFound, ValidationFailed
from .naming import repository_prefix
from .spec import (
    CategorySpec,
    ChannelSpec,
    DesiredStateDocument,
    PermissionOverlayEntry,
    RoleSpec,
)

log = logging.getLogger("repobridge.provisioning.store")

_HEX_COLOR_RE = re.compile(r"^#?[0-9a-fA-F]{6}$")

_FOUNDER_MANAGE = PermissionOverlayEntry(
    "Founder", allow=("ViewChannel", "SendMessages", "ReadMessageHistory", "ManageMessages")
)
_FOUNDER_CATEGORY = PermissionOverlayEntry(
    "Founder",
    allow=("ViewChannel", "SendMessages", "ReadMessageHistory", "ManageChannels", "ManageMessages"),
)


def _read_only_feed(reader: str) -> tuple[PermissionOverlayEntry, ...]:
    return (
        _FOUNDER_MANAGE,
        PermissionOverlayEntry(reader, allow=("ViewChannel", "ReadMessageHistory"), deny=("SendMessages",)),
    )


def repository_category(name: str, private: bool = False) -> CategorySpec:
    """Category template for a tracked repository.

    Commits and releases are read-only feeds written by the webhook
    notifier. Private repositories are hidden from ``@everyone`` and opened
    to Founder and Licensee.
    """
    prefix = repository_prefix(name)
    reader = "Licensee" if private else "@everyone"
    channels = (
        ChannelSpec(f"{prefix}-general", f"General discussion about {name}"),
        ChannelSpec(
            f"{prefix}-feature-requests",
            f"Request features for {name} - Tag the bot to create GitHub issues",
        ),
        ChannelSpec(f"{prefix}-bug-reports", "Report bugs - Tag the bot to create GitHub issues"),
        ChannelSpec(f"{prefix}-commits", "Automated commit feed from GitHub", _read_only_feed(reader)),
        ChannelSpec(f"{prefix}-releases", "Automated release announcements from GitHub", _read_only_feed(reader)),
        ChannelSpec(f"{prefix}-discussions", f"Community discussions about {name}"),
    )
    if private:
        overlays: tuple[PermissionOverlayEntry, ...] = (
            PermissionOverlayEntry("@everyone", deny=("ViewChannel",)),
            _FOUNDER_CATEGORY,
            PermissionOverlayEntry("Licensee", allow=("ViewChannel", "SendMessages", "ReadMessageHistory")),
        )
    else:
        overlays = (_FOUNDER_CATEGORY,)
    return CategorySpec(
        name=f"{REPOSITORY_MARKER} {name}",
        channels=channels,
        permissions=overlays,
        description="Private Project - Licensee Only" if private else "Public Project",
    )


@dataclass(frozen=True)
class RepositoryEntry:
    category: str
    prefix: str
    private: bool
    channel_count: int


class StructureStore:
    """JSON-backed DesiredStateDocument.

    Every mutation re-reads the file, applies the change and rewrites it
    atomically, so out-of-band edits between commands are not lost.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    def load_sync(self) -> DesiredStateDocument:
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            raise ConfigNotFound(self._path) from None
        except json.JSONDecodeError as e:
            raise ValidationFailed(f"{self._path} is not valid JSON: {e}") from e
        return DesiredStateDocument.from_dict(raw)

    def save_sync(self, doc: DesiredStateDocument) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".structure-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc.to_dict(), fh, indent=2, ensure_ascii=False)
                fh.write("\n")
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def load(self) -> DesiredStateDocument:
        return await asyncio.to_thread(self.load_sync)

    async def save(self, doc: DesiredStateDocument) -> None:
        await asyncio.to_thread(self.save_sync, doc)

    async def add_role(self, role: RoleSpec) -> RoleSpec:
        async with self._lock:
            doc = await self.load()
            if role.name in doc.role_names():
                raise ValidationFailed(f'Role "{role.name}" already exists in configuration.')
            doc.roles.append(role)
            await self.save(doc)
        log.info("Added role %s to %s", role.name, self._path)
        return role

    async def add_repository(self, name: str, private: bool = False) -> CategorySpec:
        prefix = repository_prefix(name)
        if not prefix:
            raise ValidationFailed("Repository name must contain letters or digits.")
        async with self._lock:
            doc = await self.load()
            if any(prefix in cat.name.lower() for cat in doc.categories):
                raise ValidationFailed(f'A category for "{name}" already exists.')
            category = repository_category(name, private)
            doc.categories.append(category)
            await self.save(doc)
        log.info("Added repository %s (%s) to %s", name, "private" if private else "public", self._path)
        return category

    async def remove_repository(self, prefix: str) -> CategorySpec:
        needle = prefix.strip().lower()
        if not needle:
            raise ValidationFailed("A repository prefix is required.")
        async with self._lock:
            doc = await self.load()
            for i, cat in enumerate(doc.categories):
                if needle in cat.name.lower():
                    removed = doc.categories.pop(i)
                    break
            else:
                raise ResourceNotFound("Repository", needle)
            await self.save(doc)
        log.info("Removed repository category %s from %s", removed.name, self._path)
        return removed

    async def list_repositories(self) -> list[RepositoryEntry]:
        doc = await self.load()
        entries = []
        for cat in doc.categories:
            if not cat.is_repository:
                continue
            first = cat.channels[0].name if cat.channels else ""
            entries.append(
                RepositoryEntry(
                    category=cat.name,
                    prefix=first.split("-")[0] if first else repository_prefix(cat.name),
                    private=cat.is_private,
                    channel_count=len(cat.channels),
                )
            )
        return entries


def new_role(name: str, color: str, mentionable: bool = False, hoist: bool = False) -> RoleSpec:
    """Role spec as created by the ``addrole`` command."""
    name = name.strip()
    color = color.strip()
    if not name:
        raise ValidationFailed("A role name is required.")
    if not _HEX_COLOR_RE.match(color):
        raise ValidationFailed(f'"{color}" is not a hex color (e.g. #00FF00).')
    return RoleSpec(
        name=name,
        color=color if color.startswith("#") else f"#{color}",
        permissions=DEFAULT_ROLE_PERMISSIONS,
        mentionable=mentionable,
        hoist=hoist,
    )
