from __future__ import annotations

import json
from typing import Any, Dict

import pytest

from repobridge.permissions import Actor, PermissionEvaluator, PermissionsConfig, PermissionsStore
from repobridge.provisioning.engine import ReconcileSettings, Reconciler
from repobridge.provisioning.spec import DesiredStateDocument
from repobridge.provisioning.store import StructureStore
from repobridge.router import CommandRouter, Invocation, RouterSettings
from repobridge.testing.fakes import (
    FakeAssistant,
    FakePlatform,
    FakeResponder,
    FakeTracker,
    FakeUser,
    RecordingSleep,
)

OPEN = {"enabled": True, "channels": ["*"], "roles": ["*"], "requireAdmin": False}
ADMIN_ONLY = {"enabled": True, "channels": ["*"], "roles": ["*"], "requireAdmin": True}

PERMISSIONS: Dict[str, Any] = {
    "servers": {
        "default": {
            "enabled": True,
            "commands": {
                "readme": OPEN,
                "issue": {
                    "enabled": True,
                    "channels": ["*-feature-requests", "*-bug-reports"],
                    "roles": ["*"],
                    "requireAdmin": False,
                },
                "feature-request": OPEN,
                "chat": OPEN,
                "listrepos": OPEN,
                "ping": OPEN,
                "help": OPEN,
                "clear": ADMIN_ONLY,
                "setup": ADMIN_ONLY,
                "addrepo": ADMIN_ONLY,
                "removerepo": ADMIN_ONLY,
                "addrole": ADMIN_ONLY,
                "purge": ADMIN_ONLY,
                "purge-all": ADMIN_ONLY,
                "reload": ADMIN_ONLY,
            },
        },
        "999": {"enabled": False, "commands": {}},
    },
    "globalAdminRoles": ["Founder", "Administrator"],
}

STRUCTURE: Dict[str, Any] = {
    "roles": [
        {"name": "Founder", "color": "#E74C3C", "permissions": ["Administrator"], "hoist": True},
        {"name": "Licensee", "color": "#9B59B6"},
    ],
    "categories": [
        {
            "name": "📢 GENERAL",
            "channels": [
                {"name": "announcements", "topic": "News"},
                {"name": "general"},
            ],
        },
        {
            "name": "📦 QiFlow",
            "permissions": [{"role": "Founder", "allow": ["ViewChannel", "ManageChannels"]}],
            "channels": [
                {"name": "qiflow-general"},
                {"name": "qiflow-feature-requests"},
                {"name": "qiflow-bug-reports"},
            ],
        },
    ],
}

GUILD_ID = 4242


@pytest.fixture
def permissions_config() -> PermissionsConfig:
    return PermissionsConfig.from_dict(PERMISSIONS)


@pytest.fixture
def evaluator(permissions_config: PermissionsConfig) -> PermissionEvaluator:
    return PermissionEvaluator(PermissionsStore("permissions.json", config=permissions_config))


@pytest.fixture
def structure_path(tmp_path):
    path = tmp_path / "discord-structure.json"
    path.write_text(json.dumps(STRUCTURE), encoding="utf-8")
    return path


@pytest.fixture
def structures(structure_path) -> StructureStore:
    return StructureStore(str(structure_path))


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker(readmes={"QiFlow": "# QiFlow\n\nQuantum workflow engine."})


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def router(evaluator, structures, tracker, assistant, platform, sleep) -> CommandRouter:
    router = CommandRouter(
        evaluator=evaluator,
        structures=structures,
        reconciler=Reconciler(ReconcileSettings(), sleep=sleep),
        tracker=tracker,
        assistant=assistant,
        platform_factory=lambda guild: platform,
        settings=RouterSettings(command_prefix="!", github_owner="irsiksoftware"),
        sleep=sleep,
    )
    router.directory.add("qiflow", "QiFlow")
    router.directory.add("qiflowgo", "QiFlowGo")
    return router


@pytest.fixture
def make_invocation():
    """Build an Invocation with a FakeResponder; admins carry the Founder role."""

    def _make(
        channel_name: str = "general",
        admin: bool = False,
        guild_id: int = GUILD_ID,
        **kwargs: Any,
    ) -> Invocation:
        roles = frozenset({"Founder"}) if admin else frozenset({"Member"})
        kwargs.setdefault("bot_user", FakeUser(id=1, name="RepoBridge", bot=True))
        return Invocation(
            actor=Actor(user_id=77, role_names=roles),
            guild_id=guild_id,
            channel_name=channel_name,
            responder=FakeResponder(),
            author_tag="tester#0001",
            channel_id=555,
            **kwargs,
        )

    return _make


@pytest.fixture
def desired() -> DesiredStateDocument:
    return DesiredStateDocument.from_dict(STRUCTURE)
