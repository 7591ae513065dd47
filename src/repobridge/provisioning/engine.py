"""
Structure reconciler.

Converges a guild towards a DesiredStateDocument using create-if-missing
operations only. Existing roles, categories and channels are never edited
(the opt-in overlay push for categories aside), so a second run against the
same document performs no creates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import (
    BridgeError,
    PlatformRateLimited,
    PlatformResourceLimitReached,
    ReconciliationAborted,
)
from ..interfaces import ChatPlatformClient, LiveCategory, LiveGuildState, ResolvedOverlay
from .naming import find_exact, find_fuzzy
from .reporting import ReconciliationReport
from .spec import CategorySpec, ChannelSpec, DesiredStateDocument, PermissionOverlayEntry, RoleSpec

log = logging.getLogger("repobridge.provisioning.engine")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ReconcileSettings:
    category_delay: float = 0.5
    channel_delay: float = 0.3
    fallback_backoff: float = 2.0
    sync_existing_overlays: bool = False

    @classmethod
    def from_settings(cls, settings) -> "ReconcileSettings":
        return cls(
            category_delay=settings.category_create_delay_ms / 1000,
            channel_delay=settings.channel_create_delay_ms / 1000,
            fallback_backoff=settings.rate_limit_fallback_ms / 1000,
            sync_existing_overlays=settings.sync_existing_overlays,
        )


def resolve_overlays(
    entries: Iterable[PermissionOverlayEntry],
    role_ids: Dict[str, int],
    everyone_id: int,
    report: Optional[ReconciliationReport] = None,
) -> List[ResolvedOverlay]:
    """Map overlay role references to platform ids, keeping declaration order.

    Entries naming a role that was not resolved are dropped with a warning.
    """
    resolved: List[ResolvedOverlay] = []
    for entry in entries:
        if entry.is_everyone:
            target = everyone_id
        elif entry.role in role_ids:
            target = role_ids[entry.role]
        else:
            log.warning("Dropping overlay for unresolved role %r", entry.role)
            if report is not None:
                report.dropped_overlays.append(entry.role)
            continue
        resolved.append(ResolvedOverlay(target_id=target, allow=entry.allow, deny=entry.deny))
    return resolved


def match_categories(specs: Sequence[CategorySpec], categories: Iterable[LiveCategory]) -> Dict[int, LiveCategory]:
    """Pair category specs (by position) with live categories before any create.

    Exact and equal-normalised names are claimed first. Containment is only
    tried against live categories left unclaimed, so "📦 QiFlow" never stands
    in for "📦 QiFlowGo". Categories created during the run are never
    candidates.
    """
    unclaimed = list(categories)
    matches: Dict[int, LiveCategory] = {}
    for lookup in (find_exact, find_fuzzy):
        for index, spec in enumerate(specs):
            if index in matches:
                continue
            found = lookup(unclaimed, spec.name)
            if found is not None:
                matches[index] = found
                unclaimed = [c for c in unclaimed if c is not found]
    return matches


class Reconciler:
    """Applies a desired-state document to one guild.

    Not safe to run concurrently against the same guild; callers serialise.
    """

    def __init__(self, settings: Optional[ReconcileSettings] = None, sleep: Sleep = asyncio.sleep):
        self.settings = settings or ReconcileSettings()
        self._sleep = sleep

    async def run(self, desired: DesiredStateDocument, platform: ChatPlatformClient) -> ReconciliationReport:
        live = await platform.snapshot()
        return await self.reconcile(desired, live, platform)

    async def reconcile(
        self,
        desired: DesiredStateDocument,
        live: LiveGuildState,
        platform: ChatPlatformClient,
    ) -> ReconciliationReport:
        report = ReconciliationReport()
        role_ids = await self._reconcile_roles(desired.roles, live, platform, report)
        matches = match_categories(desired.categories, live.categories)
        for index, spec in enumerate(desired.categories):
            category = await self._reconcile_category(spec, matches.get(index), live, platform, role_ids, report)
            for channel in spec.channels:
                await self._reconcile_channel(channel, category, live, platform, role_ids, report)
        log.info(
            "Reconciliation finished: %d created, %d channel failures",
            report.total_created,
            report.channels_failed,
        )
        return report

    async def _backoff(self, exc: PlatformRateLimited) -> None:
        if exc.retry_after_ms is not None:
            delay = exc.retry_after_ms / 1000
        else:
            delay = self.settings.fallback_backoff
        log.warning("Rate limited, backing off %.2fs", delay)
        await self._sleep(delay)

    async def _reconcile_roles(
        self,
        roles: Iterable[RoleSpec],
        live: LiveGuildState,
        platform: ChatPlatformClient,
        report: ReconciliationReport,
    ) -> Dict[str, int]:
        role_ids: Dict[str, int] = {}
        for spec in roles:
            existing = live.role_named(spec.name)
            if existing is not None:
                log.debug("Role %s exists (%d)", spec.name, existing.id)
                role_ids[spec.name] = existing.id
                report.roles_existing += 1
                continue
            try:
                created = await platform.create_role(spec)
            except PlatformRateLimited as e:
                await self._backoff(e)
                raise ReconciliationAborted(report, e) from e
            except BridgeError as e:
                log.error("Failed to create role %s: %s", spec.name, e)
                raise ReconciliationAborted(report, e) from e
            log.info("Created role %s", spec.name)
            live.roles.append(created)
            role_ids[spec.name] = created.id
            report.roles_created += 1
        return role_ids

    async def _reconcile_category(
        self,
        spec: CategorySpec,
        existing: Optional[LiveCategory],
        live: LiveGuildState,
        platform: ChatPlatformClient,
        role_ids: Dict[str, int],
        report: ReconciliationReport,
    ) -> LiveCategory:
        if existing is not None:
            log.debug("Category %s matches existing %s", spec.name, existing.name)
            report.categories_existing += 1
            if self.settings.sync_existing_overlays:
                overlays = resolve_overlays(spec.permissions, role_ids, live.everyone_id, report)
                try:
                    await platform.replace_overlays(existing.id, overlays)
                except BridgeError as e:
                    log.warning("Overlay update for category %s failed: %s", existing.name, e)
            return existing

        overlays = resolve_overlays(spec.permissions, role_ids, live.everyone_id, report)
        try:
            created = await platform.create_category(spec.name, overlays)
        except PlatformRateLimited as e:
            await self._backoff(e)
            raise ReconciliationAborted(report, e) from e
        except PlatformResourceLimitReached as e:
            log.error("Category limit reached while creating %s", spec.name)
            raise ReconciliationAborted(report, e) from e
        except BridgeError as e:
            log.error("Failed to create category %s: %s", spec.name, e)
            raise ReconciliationAborted(report, e) from e
        log.info("Created category %s", spec.name)
        live.categories.append(created)
        report.categories_created += 1
        await self._sleep(self.settings.category_delay)
        return created

    async def _reconcile_channel(
        self,
        spec: ChannelSpec,
        category: LiveCategory,
        live: LiveGuildState,
        platform: ChatPlatformClient,
        role_ids: Dict[str, int],
        report: ReconciliationReport,
    ) -> None:
        if live.channel_in(spec.name, category.id) is not None:
            report.channels_skipped += 1
            return

        overlays = resolve_overlays(spec.permissions, role_ids, live.everyone_id, report)
        try:
            try:
                created = await platform.create_text_channel(spec.name, category.id, spec.topic, overlays)
            except PlatformRateLimited as e:
                await self._backoff(e)
                created = await platform.create_text_channel(spec.name, category.id, spec.topic, overlays)
        except BridgeError as e:
            log.warning("Skipping channel #%s in %s: %s", spec.name, category.name, e)
            report.record_channel_failure(spec.name, e.user_message)
            return
        log.info("Created channel #%s in %s", spec.name, category.name)
        live.channels.append(created)
        report.channels_created += 1
        await self._sleep(self.settings.channel_delay)
