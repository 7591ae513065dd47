from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import discord
import pytest

from repobridge.assistant import NON_ADMIN_NOTE
from repobridge.errors import PlatformForbidden, UpstreamFailure, UpstreamTimeout, ValidationFailed
from repobridge.provisioning.engine import Reconciler
from repobridge.repositories import RepositoryDirectory
from repobridge.router import (
    AdminAddRepo,
    AdminAddRole,
    AdminRemoveRepo,
    AdminSetup,
    AssistantChat,
    Clear,
    CreateIssue,
    FeatureRequest,
    FetchDocs,
    Help,
    ListRepos,
    NoOp,
    Ping,
    Purge,
    PurgeAll,
    Reload,
    classify_message,
    draft_issue,
    parse_prefix_command,
)
from repobridge.testing.fakes import FakeGuild, FakeMember, FakeMessage, FakeTextChannel, FakeUser

DIRECTORY = RepositoryDirectory({"qiflow": "QiFlow", "qiflowgo": "QiFlowGo"})


def classify(content, channel_name="general", category_name=None, mentioned=True):
    return classify_message(
        content,
        mentioned=mentioned,
        prefix="!",
        channel_name=channel_name,
        category_name=category_name,
        directory=DIRECTORY,
    )


class TestClassification:
    """Chat messages map onto command variants; first match wins."""

    def test_readme_with_explicit_repo(self):
        assert classify("<@1> readme QiFlow") == FetchDocs(target="QiFlow")

    def test_readme_repo_from_category(self):
        cmd = classify("<@1> show me the readme", channel_name="qiflow-general", category_name="📦 QiFlow")
        assert cmd == FetchDocs(target="QiFlow")

    def test_readme_repo_from_channel_prefix(self):
        assert classify("<@1> readme", channel_name="qiflowgo-general") == FetchDocs(target="QiFlowGo")

    def test_readme_with_document_path(self):
        assert classify("<@1> readme QiFlow docs/INSTALL.md") == FetchDocs(target="QiFlow", path="docs/INSTALL.md")

    def test_issue_in_bug_channel_uses_longest_prefix(self):
        cmd = classify("<@!1> Login fails\nSteps", channel_name="qiflowgo-bug-reports")
        assert cmd == CreateIssue(repo="QiFlowGo", kind="bug", content="Login fails\nSteps")

    def test_issue_in_feature_channel(self):
        cmd = classify("<@1> Dark mode please", channel_name="qiflow-feature-requests")
        assert isinstance(cmd, CreateIssue)
        assert cmd.kind == "feature"

    def test_other_mentions_go_to_the_assistant(self):
        assert classify("<@1> how do I install it?") == AssistantChat(text="how do I install it?", repo=None)
        chat = classify("<@1> how do I install it?", channel_name="qiflow-general")
        assert chat == AssistantChat(text="how do I install it?", repo="QiFlow")

    def test_prefix_commands_without_mention(self):
        assert classify("!setup", mentioned=False) == AdminSetup()
        assert classify("!listrepos", mentioned=False) == ListRepos()

    def test_plain_messages_are_ignored(self):
        assert isinstance(classify("hello there", mentioned=False), NoOp)


class TestPrefixParsing:
    def test_addrepo(self):
        assert parse_prefix_command("!addrepo QiFlow private", "!") == AdminAddRepo(repo="QiFlow", private=True)
        assert parse_prefix_command("!addrepo QiFlow", "!") == AdminAddRepo(repo="QiFlow", private=False)

    def test_removerepo_lowercases(self):
        assert parse_prefix_command("!removerepo QiFlow", "!") == AdminRemoveRepo(prefix="qiflow")

    def test_addrole_flags(self):
        cmd = parse_prefix_command("!addrole Contributor #00FF00 yes no", "!")
        assert cmd == AdminAddRole(role="Contributor", color="#00FF00", mentionable=True, hoist=False)

    def test_aliases_and_unknown(self):
        assert parse_prefix_command("!reset", "!") == Clear()
        assert parse_prefix_command("!PING", "!") == Ping()
        assert isinstance(parse_prefix_command("!dance", "!"), NoOp)
        assert isinstance(parse_prefix_command("!", "!"), NoOp)

    def test_purge_target(self):
        assert parse_prefix_command("!purge GitHub Actions", "!") == Purge(target="GitHub Actions")
        assert parse_prefix_command("!purge", "!") == Purge(target=None)

    def test_purge_all_limit(self):
        assert parse_prefix_command("!purge-all", "!") == PurgeAll(limit=100)
        assert parse_prefix_command("!purge-all 25", "!") == PurgeAll(limit=25)
        assert parse_prefix_command("!purge-all lots", "!") == PurgeAll(limit=0)

    def test_reload(self):
        assert parse_prefix_command("!reload", "!") == Reload()


class TestIssueDraft:
    def test_minimum_length_boundary(self):
        with pytest.raises(ValidationFailed):
            draft_issue("123456789")
        assert draft_issue("1234567890") == ("1234567890", "1234567890")

    def test_title_is_cut(self):
        title, body = draft_issue("t" * 150)
        assert len(title) == 100
        assert body == "t" * 150

    def test_body_is_remaining_lines(self):
        assert draft_issue("Crash on start\nStack trace\nhere") == ("Crash on start", "Stack trace\nhere")


def execute(router, command, inv):
    asyncio.run(router.execute(command, inv))
    return inv.responder


class TestIssueCommand:
    def test_creates_issue(self, router, tracker, make_invocation):
        inv = make_invocation("qiflow-bug-reports")
        responder = execute(router, CreateIssue("QiFlow", "bug", "Login fails\nSteps to reproduce"), inv)

        issue = tracker.issues[0]
        assert issue["title"] == "Login fails"
        assert issue["body"].startswith("Steps to reproduce")
        assert "Reported by tester#0001 via Discord" in issue["body"]
        assert issue["labels"] == ["bug"]
        assert "https://github.com/irsiksoftware/QiFlow/issues/1" in responder.last
        assert [e for e in responder.events if e[0] != "reply"] == [("mark", "⏳"), ("clear", None), ("mark", "✅")]

    def test_short_draft_is_rejected(self, router, tracker, make_invocation):
        responder = execute(router, CreateIssue("QiFlow", "bug", "too short"), make_invocation("qiflow-bug-reports"))
        assert tracker.issues == []
        assert responder.last.startswith("❌ Please provide more details")

    def test_denied_outside_issue_channels(self, router, tracker, make_invocation):
        responder = execute(router, CreateIssue("QiFlow", "bug", "Login fails badly"), make_invocation("general"))
        assert tracker.issues == []
        assert "can only be used in these channels" in responder.last

    def test_upstream_failure_is_reported(self, router, tracker, make_invocation):
        tracker.error = UpstreamFailure("GitHub returned 500 for repository irsiksoftware/QiFlow")
        responder = execute(router, CreateIssue("QiFlow", "bug", "Login fails badly"), make_invocation("qiflow-bug-reports"))
        assert responder.last == "❌ GitHub returned 500 for repository irsiksoftware/QiFlow"
        assert responder.marks == ["❌"]

    def test_unexpected_errors_get_a_generic_reply(self, router, tracker, make_invocation):
        tracker.error = RuntimeError("kaboom")
        responder = execute(router, CreateIssue("QiFlow", "bug", "Login fails badly"), make_invocation("qiflow-bug-reports"))
        assert "Something went wrong running `issue`" in responder.last
        assert "kaboom" not in responder.last


class TestReadme:
    def test_short_readme_in_one_message(self, router, make_invocation):
        responder = execute(router, FetchDocs("QiFlow"), make_invocation())
        assert responder.sent == []
        assert responder.last.startswith("📄 **README for irsiksoftware/QiFlow**")
        assert "**__QiFlow__**" in responder.last

    def test_long_readme_is_paginated(self, router, tracker, sleep, make_invocation):
        tracker.readmes["Big"] = "x" * 5000
        responder = execute(router, FetchDocs("Big"), make_invocation())
        assert len(responder.sent) == 3
        assert sleep.delays == [0.5, 0.5, 0.5]

    def test_very_long_readme_is_capped_with_a_link(self, router, tracker, make_invocation):
        tracker.readmes["Huge"] = "y" * 12000
        responder = execute(router, FetchDocs("Huge"), make_invocation())
        assert len(responder.sent) == 6
        assert "https://github.com/irsiksoftware/Huge#readme" in responder.sent[-1]

    def test_missing_readme(self, router, make_invocation):
        responder = execute(router, FetchDocs("Nope"), make_invocation())
        assert responder.last == "❌ README not found: Nope"

    def test_missing_target_shows_usage(self, router, make_invocation):
        responder = execute(router, FetchDocs(None), make_invocation())
        assert "Usage: `@bot readme <repo-name>`" in responder.last

    def test_document_path_uses_file_fetch(self, router, tracker, make_invocation):
        tracker.files[("QiFlow", "docs/INSTALL.md")] = "## Install\npip install qiflow"
        responder = execute(router, FetchDocs("QiFlow", "/docs/INSTALL.md"), make_invocation())
        assert responder.last.startswith("📄 **docs/INSTALL.md from irsiksoftware/QiFlow**")
        assert "**__Install__**" in responder.last

    def test_missing_document(self, router, make_invocation):
        responder = execute(router, FetchDocs("QiFlow", "docs/NOPE.md"), make_invocation())
        assert responder.last == "❌ File not found: QiFlow/docs/NOPE.md"


class TestAssistantChat:
    def test_non_admin_prompt_carries_context_and_note(self, router, assistant, make_invocation):
        responder = execute(router, AssistantChat("how do I install?", "QiFlow"), make_invocation("qiflow-general"))
        prompt, context = assistant.calls[0]
        assert prompt.startswith("[Context: QiFlow repository]\n")
        assert NON_ADMIN_NOTE in prompt
        assert context == "QiFlow"
        assert responder.last == "Hello from the assistant"

    def test_admin_prompt_has_no_note(self, router, assistant, make_invocation):
        execute(router, AssistantChat("restart the service"), make_invocation(admin=True))
        assert assistant.calls[0] == ("restart the service", None)

    def test_timeout(self, router, assistant, make_invocation):
        assistant.error = UpstreamTimeout("The assistant timed out after 120 seconds")
        responder = execute(router, AssistantChat("slow question"), make_invocation())
        assert responder.last == "❌ The assistant timed out after 120 seconds"


class TestSetup:
    def test_requires_admin(self, router, platform, make_invocation):
        responder = execute(router, AdminSetup(), make_invocation())
        assert platform.create_count == 0
        assert "administrator" in responder.last

    def test_runs_reconciliation(self, router, platform, make_invocation):
        responder = execute(router, AdminSetup(), make_invocation(admin=True))
        assert platform.create_count == 9
        assert responder.replies[0] == "Starting server setup..."
        assert responder.last.startswith("✅ Server setup complete!\nRoles: 2 created, 0 existing")

    def test_concurrent_setup_is_rejected(self, router, make_invocation):
        first = make_invocation(admin=True)
        second = make_invocation(admin=True)

        async def nested_sleep(delay):
            if not second.responder.replies:
                await router.execute(AdminSetup(), second)

        router.reconciler = Reconciler(sleep=nested_sleep)
        execute(router, AdminSetup(), first)

        assert second.responder.last == "❌ Setup is already running for this server."
        assert first.responder.last.startswith("✅ Server setup complete!")
        assert not router._setup_running

    def test_aborted_setup_reports_partial_progress(self, router, platform, make_invocation):
        platform.fail("Licensee", PlatformForbidden())
        responder = execute(router, AdminSetup(), make_invocation(admin=True))
        assert "Setup aborted" in responder.last
        assert "Completed before the failure:\nRoles: 1 created" in responder.last
        assert not router._setup_running


class TestConfigurationCommands:
    def test_addrepo_updates_directory(self, router, make_invocation):
        responder = execute(router, AdminAddRepo("NewRepo"), make_invocation(admin=True))
        assert "Repository **NewRepo** added to configuration (Public)" in responder.last
        assert "#newrepo-bug-reports" in responder.last
        assert router.directory.repo_for_channel("newrepo-bug-reports") == "NewRepo"

    def test_addrepo_usage(self, router, make_invocation):
        responder = execute(router, AdminAddRepo(""), make_invocation(admin=True))
        assert "`!addrepo <repo-name> [public|private]`" in responder.last

    def test_removerepo(self, router, make_invocation):
        responder = execute(router, AdminRemoveRepo("qiflow"), make_invocation(admin=True))
        assert "Repository configuration removed: 📦 QiFlow" in responder.last
        assert router.directory.repo_for_channel("qiflow-general") is None

    def test_removerepo_unknown(self, router, make_invocation):
        responder = execute(router, AdminRemoveRepo("ghost"), make_invocation(admin=True))
        assert responder.last == "❌ Repository not found: ghost"

    def test_addrole(self, router, structures, make_invocation):
        responder = execute(router, AdminAddRole("Contributor", "#00FF00", True, False), make_invocation(admin=True))
        assert 'Role "Contributor" added to configuration!' in responder.last
        assert "Contributor" in structures.load_sync().role_names()

    def test_listrepos(self, router, make_invocation):
        responder = execute(router, ListRepos(), make_invocation())
        assert "**📦 QiFlow** (Public)" in responder.last
        assert "Prefix: `qiflow`" in responder.last

    def test_reload_picks_up_edited_files(self, router, structures, tmp_path, make_invocation):
        permissions = tmp_path / "permissions.json"
        permissions.write_text(json.dumps({
            "servers": {"default": {"enabled": True, "commands": {"reload": {"requireAdmin": True}}}},
        }), encoding="utf-8")
        router.evaluator.store.path = str(permissions)
        asyncio.run(structures.add_repository("NewRepo"))

        responder = execute(router, Reload(), make_invocation(admin=True))

        assert responder.last == "✅ Configuration reloaded: 1 server entries, 2 repository prefixes."
        assert router.directory.repo_for_channel("newrepo-general") == "NewRepo"
        assert not router.evaluator.evaluate(make_invocation().actor, "general", 4242, "ping").allowed

    def test_failed_reload_keeps_current_permissions(self, router, tmp_path, make_invocation):
        broken = tmp_path / "permissions.json"
        broken.write_text("{oops", encoding="utf-8")
        router.evaluator.store.path = str(broken)

        responder = execute(router, Reload(), make_invocation(admin=True))

        assert responder.last.startswith("❌ Malformed permissions document")
        assert router.evaluator.evaluate(make_invocation().actor, "general", 4242, "ping").allowed


class TestFeatureRequests:
    def test_medium_priority_is_filed_directly(self, router, tracker, make_invocation):
        responder = execute(
            router,
            FeatureRequest("Dark mode", "Please add a dark theme", "medium"),
            make_invocation("qiflow-feature-requests"),
        )
        issue = tracker.issues[0]
        assert issue["repo"] == "QiFlow"
        assert issue["labels"] == ["enhancement", "priority: medium"]
        assert issue["approved_by"] is None
        assert "Created medium feature request" in responder.last

    def test_repo_from_category(self, router, tracker, make_invocation):
        inv = make_invocation("ideas", category_name="📦 Other")
        execute(router, FeatureRequest("Dark mode", "Please", "low"), inv)
        assert tracker.issues[0]["repo"] == "Other"

    def test_invalid_priority(self, router, make_invocation):
        responder = execute(router, FeatureRequest("X", "Y", "whenever"), make_invocation("qiflow-general"))
        assert responder.last.startswith("❌ Priority must be one of")

    def test_undetectable_repo(self, router, make_invocation):
        responder = execute(router, FeatureRequest("X", "Y", "low"), make_invocation("general"))
        assert "Could not detect the repository" in responder.last

    def test_critical_needs_an_approver(self, router, tracker, make_invocation):
        responder = execute(router, FeatureRequest("X", "Y", "critical"), make_invocation("qiflow-general"))
        assert tracker.issues == []
        assert "need admin approval" in responder.last

    def test_approved_critical_request(self, router, tracker, make_invocation):
        async def approve(request, inv):
            return "admin#0001"

        router.approver = approve
        execute(router, FeatureRequest("Outage fix", "Now", "critical"), make_invocation("qiflow-general"))
        assert tracker.issues[0]["approved_by"] == "admin#0001"

    def test_unapproved_request_times_out(self, router, tracker, make_invocation):
        async def never(request, inv):
            return None

        router.approver = never
        responder = execute(router, FeatureRequest("Outage fix", "Now", "urgent"), make_invocation("qiflow-general"))
        assert tracker.issues == []
        assert responder.sent[-1].startswith("⏰ The urgent request **Outage fix** was not approved within 24 hours")


def _http_error(status=403):
    return discord.Forbidden(SimpleNamespace(status=status, reason="Forbidden"), "Missing Access")


class TestPurge:
    """Message purge by bot default, member name or webhook name."""

    def _channel(self, bot, alice, hook):
        return FakeTextChannel(messages=[
            FakeMessage(1, bot, "hello"),
            FakeMessage(2, alice, "hi"),
            FakeMessage(3, hook, "push", webhook_id=9),
            FakeMessage(4, bot, "again"),
        ])

    def test_defaults_to_own_messages(self, router, sleep, make_invocation):
        bot = FakeUser(id=1, name="RepoBridge", bot=True)
        channel = self._channel(bot, FakeMember(50, "alice"), FakeUser(900, "GitHub", bot=True))
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild(), bot_user=bot)

        responder = execute(router, Purge(None), inv)

        assert [m.id for m in channel.messages if m.deleted] == [1, 4]
        assert responder.sent[-1] == "✅ Deleted 2 message(s) from **RepoBridge** in this channel."
        assert sleep.delays == [0.2, 0.2]

    def test_by_member_display_name(self, router, make_invocation):
        alice = FakeMember(50, "alice", display_name="Alice A")
        channel = self._channel(FakeUser(1, "RepoBridge", bot=True), alice, FakeUser(900, "GitHub", bot=True))
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild(members=[alice]))

        execute(router, Purge("Alice A"), inv)

        assert [m.id for m in channel.messages if m.deleted] == [2]

    def test_by_webhook_name(self, router, make_invocation):
        channel = self._channel(FakeUser(1, "RepoBridge", bot=True), FakeMember(50, "alice"), FakeUser(900, "GitHub", bot=True))
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild())

        responder = execute(router, Purge("github"), inv)

        assert [m.id for m in channel.messages if m.deleted] == [3]
        assert "**github**" in responder.sent[-1]

    def test_failed_deletes_are_skipped(self, router, make_invocation):
        bot = FakeUser(id=1, name="RepoBridge", bot=True)
        channel = self._channel(bot, FakeMember(50, "alice"), FakeUser(900, "GitHub", bot=True))
        channel.messages[0].fail_delete = _http_error()
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild(), bot_user=bot)

        responder = execute(router, Purge(None), inv)

        assert "Deleted 1 message(s)" in responder.sent[-1]

    def test_requires_admin(self, router, make_invocation):
        channel = FakeTextChannel()
        responder = execute(router, Purge(None), make_invocation(channel=channel))
        assert "administrator" in responder.last


class TestPurgeAll:
    def _channel(self, count):
        author = FakeMember(50, "alice")
        return FakeTextChannel(messages=[FakeMessage(i, author, f"message {i}") for i in range(1, count + 1)])

    def test_deletes_most_recent_messages_up_to_the_limit(self, router, sleep, make_invocation):
        channel = self._channel(5)
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild())

        responder = execute(router, PurgeAll(limit=3), inv)

        assert [m.id for m in channel.messages if m.deleted] == [3, 4, 5]
        assert responder.replies[0] == "🗑️ Deleting up to **3** messages in this channel..."
        assert responder.sent[-1] == "✅ Deleted 3 message(s) from this channel."
        assert sleep.delays == [0.2, 0.2, 0.2]

    def test_failed_deletes_are_skipped(self, router, make_invocation):
        channel = self._channel(2)
        channel.messages[1].fail_delete = _http_error()
        inv = make_invocation(admin=True, channel=channel, guild=FakeGuild())

        responder = execute(router, PurgeAll(), inv)

        assert [m.id for m in channel.messages if m.deleted] == [1]
        assert "Deleted 1 message(s)" in responder.sent[-1]

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_limit_out_of_range(self, router, limit, make_invocation):
        channel = self._channel(2)
        responder = execute(router, PurgeAll(limit=limit), make_invocation(admin=True, channel=channel))
        assert responder.last == "❌ The limit must be a number between 1 and 1000."
        assert not any(m.deleted for m in channel.messages)

    def test_requires_admin(self, router, make_invocation):
        channel = self._channel(2)
        responder = execute(router, PurgeAll(), make_invocation(channel=channel))
        assert "administrator" in responder.last
        assert not any(m.deleted for m in channel.messages)


class TestSmallCommands:
    def test_clear(self, router, assistant, make_invocation):
        responder = execute(router, Clear(), make_invocation(admin=True))
        assert assistant.cleared == [555]
        assert "Conversation history cleared" in responder.last

    def test_ping(self, router, make_invocation):
        responder = execute(router, Ping(), make_invocation(latency_ms=42))
        assert responder.last == "Pong! 🏓 Latency: 42ms"

    def test_help_hides_admin_section(self, router, make_invocation):
        assert "## Admin" not in execute(router, Help(), make_invocation()).last
        assert "## Admin" in execute(router, Help(), make_invocation(admin=True)).last

    def test_noop_is_silent(self, router, make_invocation):
        responder = execute(router, NoOp(), make_invocation())
        assert responder.events == []

    def test_disabled_guild(self, router, make_invocation):
        responder = execute(router, Ping(), make_invocation(guild_id=999))
        assert responder.last == "❌ bot disabled for this context"
