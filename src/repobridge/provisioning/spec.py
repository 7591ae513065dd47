"""
Desired-state document for server structure.

Single source of truth for the roles, categories and channels the bot
provisions. Persisted as JSON (see ``store``); the on-disk keys mirror the
dataclass fields except that overlays are stored under ``permissions``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from ..constants import EVERYONE_SENTINELS, REPOSITORY_MARKER
from ..errors import ValidationFailed

log = logging.getLogger("repobridge.provisioning.spec")


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for v in values:
        seen.setdefault(str(v), None)
    return tuple(seen)


@dataclass(frozen=True)
class PermissionOverlayEntry:
    """Allow/deny adjustments for one role (or ``@everyone``)."""
    role: str
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        overlap = set(self.allow) & set(self.deny)
        if overlap:
            raise ValidationFailed(
                f"Overlay for {self.role!r} both allows and denies: {', '.join(sorted(overlap))}"
            )

    @property
    def is_everyone(self) -> bool:
        return self.role in EVERYONE_SENTINELS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionOverlayEntry":
        role = str(data.get("role", "")).strip()
        if not role:
            raise ValidationFailed("Permission overlay entry is missing a role")
        return cls(
            role=role,
            allow=_unique(data.get("allow") or ()),
            deny=_unique(data.get("deny") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role}
        if self.allow:
            out["allow"] = list(self.allow)
        if self.deny:
            out["deny"] = list(self.deny)
        return out


def _overlays(raw: Any) -> tuple[PermissionOverlayEntry, ...]:
    return tuple(PermissionOverlayEntry.from_dict(p) for p in (raw or ()))


@dataclass(frozen=True)
class RoleSpec:
    name: str
    color: str = "#99AAB5"
    permissions: tuple[str, ...] = ()
    mentionable: bool = False
    hoist: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleSpec":
        name = str(data.get("name", "")).strip()
        if not name:
            raise ValidationFailed("Role spec is missing a name")
        return cls(
            name=name,
            color=str(data.get("color") or "#99AAB5"),
            permissions=_unique(data.get("permissions") or ()),
            mentionable=bool(data.get("mentionable", False)),
            hoist=bool(data.get("hoist", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "color": self.color,
            "permissions": list(self.permissions),
            "mentionable": self.mentionable,
            "hoist": self.hoist,
        }


@dataclass(frozen=True)
class ChannelSpec:
    name: str
    topic: str = ""
    permissions: tuple[PermissionOverlayEntry, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelSpec":
        name = str(data.get("name", "")).strip()
        if not name:
            raise ValidationFailed("Channel spec is missing a name")
        return cls(
            name=name,
            topic=str(data.get("topic") or ""),
            permissions=_overlays(data.get("permissions")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "type": "text", "topic": self.topic}
        if self.permissions:
            out["permissions"] = [p.to_dict() for p in self.permissions]
        return out


@dataclass(frozen=True)
class CategorySpec:
    name: str
    channels: tuple[ChannelSpec, ...] = ()
    permissions: tuple[PermissionOverlayEntry, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        names = [c.name for c in self.channels]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValidationFailed(f"Duplicate channel names in {self.name!r}: {', '.join(dupes)}")

    @property
    def is_repository(self) -> bool:
        return REPOSITORY_MARKER in self.name

    @property
    def is_private(self) -> bool:
        return any(p.is_everyone and "ViewChannel" in p.deny for p in self.permissions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategorySpec":
        name = str(data.get("name", "")).strip()
        if not name:
            raise ValidationFailed("Category spec is missing a name")
        return cls(
            name=name,
            channels=tuple(ChannelSpec.from_dict(c) for c in (data.get("channels") or ())),
            permissions=_overlays(data.get("permissions")),
            description=str(data.get("description") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.permissions:
            out["permissions"] = [p.to_dict() for p in self.permissions]
        out["channels"] = [c.to_dict() for c in self.channels]
        return out


@dataclass
class DesiredStateDocument:
    roles: List[RoleSpec] = field(default_factory=list)
    categories: List[CategorySpec] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        for kind, names in (
            ("role", [r.name for r in self.roles]),
            ("category", [c.name for c in self.categories]),
        ):
            dupes = sorted({n for n in names if names.count(n) > 1})
            if dupes:
                raise ValidationFailed(f"Duplicate {kind} names: {', '.join(dupes)}")

    def role_names(self) -> set[str]:
        return {r.name for r in self.roles}

    def unresolved_overlay_roles(self) -> list[str]:
        """Overlay role references that name neither ``@everyone`` nor a role in this document."""
        known = self.role_names()
        missing: list[str] = []
        for cat in self.categories:
            entries = list(cat.permissions)
            for ch in cat.channels:
                entries.extend(ch.permissions)
            for entry in entries:
                if not entry.is_everyone and entry.role not in known and entry.role not in missing:
                    missing.append(entry.role)
        return missing

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DesiredStateDocument":
        if not isinstance(data, dict):
            raise ValidationFailed("Structure document must be a JSON object")
        doc = cls(
            roles=[RoleSpec.from_dict(r) for r in (data.get("roles") or ())],
            categories=[CategorySpec.from_dict(c) for c in (data.get("categories") or ())],
        )
        for role in doc.unresolved_overlay_roles():
            log.warning("Overlay references unknown role %r; it will be dropped during setup", role)
        return doc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roles": [r.to_dict() for r in self.roles],
            "categories": [c.to_dict() for c in self.categories],
        }
