"""
Provisioning Package

Desired-state structure document, fuzzy name matching, and the reconciler
that creates missing roles, categories and channels.
"""

from .engine import ReconcileSettings, Reconciler, resolve_overlays
from .reporting import ReconciliationReport
from .spec import CategorySpec, ChannelSpec, DesiredStateDocument, PermissionOverlayEntry, RoleSpec
from .store import StructureStore

__all__ = [
    "CategorySpec",
    "ChannelSpec",
    "DesiredStateDocument",
    "PermissionOverlayEntry",
    "ReconcileSettings",
    "Reconciler",
    "ReconciliationReport",
    "RoleSpec",
    "StructureStore",
    "resolve_overlays",
]
