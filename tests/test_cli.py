"""Tests for the envrelay CLI commands.

Every command runs against the in-memory relay injected through the
Click context object, inside an isolated working directory.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from envrelay.cli import main
from envrelay.config import ConfigStore
from envrelay.errors import Unauthorized
from envrelay.keystore import KeyStore
from envrelay.models import DeviceStatus
from envrelay.versioning import SnapshotService
from envrelay.workspace import Workspace


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def cwd(runner: CliRunner, tmp_path: Path):
    """Run each test inside its own empty project directory."""
    with runner.isolated_filesystem(temp_dir=tmp_path) as path:
        yield Path(path)


@pytest.fixture
def logged_in(keystore: KeyStore, config_store: ConfigStore, alice):
    keystore.save_identity(alice)
    config_store.save(auth_token="tok", user_id="alice", email="alice@example.com")


@pytest.fixture
def invoke(runner, relay, home, cwd):
    def _invoke(*args, input=None, home_dir=None, **obj):
        context = {"relay_factory": lambda config: relay, **obj}
        argv = list(args) + ["--home", str(home_dir or home)]
        return runner.invoke(main, argv, input=input, obj=context)
    return _invoke


@pytest.fixture
def project(invoke, logged_in, cwd):
    """A freshly created project linked to the working directory."""
    result = invoke("new", "--name", "My App")
    assert result.exit_code == 0, result.output
    return Workspace(cwd).require()


def _push(invoke, cwd: Path, text: str, *extra, input=None):
    (cwd / ".env.shared").write_text(text)
    return invoke("push", *extra, input=input)


class TestNew:
    """Tests for `envrelay new`."""

    def test_creates_and_links(self, invoke, logged_in, cwd, relay, keystore):
        result = invoke("new", "--name", "My App")
        assert result.exit_code == 0, result.output
        assert 'Created project "My App" (my-app)' in result.output
        record = json.loads((cwd / ".envrelay.json").read_text())
        assert record["project_slug"] == "my-app"
        assert keystore.has_project_key(record["project_id"])
        assert (cwd / ".env.shared").exists()
        assert ".env.local" in (cwd / ".gitignore").read_text()

    def test_prompts_for_name(self, invoke, logged_in):
        result = invoke("new", input="Prompted\n")
        assert result.exit_code == 0, result.output
        assert "(prompted)" in result.output

    def test_empty_name(self, invoke, logged_in, relay):
        result = invoke("new", input="\n")
        assert result.exit_code == 1
        assert "Project name is required." in result.output
        assert "create_project" not in relay.calls

    def test_requires_identity(self, invoke):
        result = invoke("new", "--name", "x")
        assert result.exit_code == 1
        assert "envrelay login" in result.output


class TestPushPull:
    """Tests for `envrelay push` and `envrelay pull`."""

    def test_push_then_pull(self, invoke, project, cwd):
        result = _push(invoke, cwd, "A=1\nB=2\n", "-m", "first")
        assert result.exit_code == 0, result.output
        assert "Pushed v1 (2 vars)" in result.output
        assert Workspace(cwd).require().last_pushed_version == 1

        (cwd / ".env.shared").write_text("garbage")
        result = invoke("pull")
        assert result.exit_code == 0, result.output
        assert "Pulled v1 (2 vars)" in result.output
        assert (cwd / ".env.shared").read_text() == "A=1\nB=2\n"

    def test_conflict_declined(self, invoke, project, cwd, relay, keystore):
        _push(invoke, cwd, "A=1")
        key = keystore.load_project_key(project.project_id)
        SnapshotService(relay, project.project_id, key).push("A=teammate")
        result = _push(invoke, cwd, "A=mine", input="n\n")
        assert result.exit_code == 0, result.output
        assert "Server has v2, you last pushed v1" in result.output
        assert "Push cancelled." in result.output
        assert len(relay.snapshots[project.project_id]) == 2

    def test_conflict_confirmed(self, invoke, project, cwd, relay, keystore):
        _push(invoke, cwd, "A=1")
        key = keystore.load_project_key(project.project_id)
        SnapshotService(relay, project.project_id, key).push("A=teammate")
        result = _push(invoke, cwd, "A=mine", input="y\n")
        assert result.exit_code == 0, result.output
        assert "Pushed v3" in result.output

    def test_force_skips_prompt(self, invoke, project, cwd, relay, keystore):
        _push(invoke, cwd, "A=1")
        key = keystore.load_project_key(project.project_id)
        SnapshotService(relay, project.project_id, key).push("A=teammate")
        result = _push(invoke, cwd, "A=mine", "--force")
        assert result.exit_code == 0, result.output
        assert "Server has" not in result.output

    def test_push_shares_with_pending(self, invoke, project, cwd, relay):
        relay.add_member(project.project_id, "bob")
        result = _push(invoke, cwd, "A=1")
        assert "Shared project key with 1 new member" in result.output
        assert (project.project_id, "bob") in relay.envelopes

    def test_push_without_key(self, invoke, project, cwd, keystore):
        keystore.project_key_path(project.project_id).unlink()
        result = _push(invoke, cwd, "A=1")
        assert result.exit_code == 1
        assert "No project key found" in result.output

    def test_push_outside_workspace(self, invoke, logged_in):
        result = invoke("push")
        assert result.exit_code == 1
        assert ".envrelay.json" in result.output

    def test_pull_empty_project(self, invoke, project):
        result = invoke("pull")
        assert result.exit_code == 1
        assert "envrelay push" in result.output

    def test_pull_without_record(self, invoke, logged_in):
        result = invoke("pull")
        assert result.exit_code == 1
        assert "--project" in result.output

    def test_pull_by_slug(self, invoke, project, cwd):
        _push(invoke, cwd, "CI=true")
        (cwd / ".envrelay.json").unlink()
        (cwd / ".env.shared").unlink()
        result = invoke("pull", "--project", "my-app", "--token", "ci-token")
        assert result.exit_code == 0, result.output
        assert (cwd / ".env.shared").read_text() == "CI=true"

    def test_pull_unknown_slug(self, invoke, project):
        result = invoke("pull", "--project", "nope")
        assert result.exit_code == 1
        assert 'Project "nope" not found.' in result.output

    def test_token_option_reaches_relay(self, runner, relay, home, cwd, logged_in):
        seen = []

        def factory(config):
            seen.append(config.auth_token)
            return relay

        runner.invoke(
            main, ["pull", "--project", "nope", "--token", "ci-token", "--home", str(home)],
            obj={"relay_factory": factory},
        )
        assert seen == ["ci-token"]
        assert ConfigStore(home).load_persisted().auth_token == "tok"


class TestDiff:
    """Tests for `envrelay diff`."""

    def test_in_sync(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1")
        result = invoke("diff")
        assert result.exit_code == 0, result.output
        assert "Local and remote are in sync." in result.output

    def test_changes(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1\nB=2")
        (cwd / ".env.shared").write_text("B=3\nC=4")
        result = invoke("diff")
        assert result.exit_code == 0, result.output
        assert "Diff: local vs server (v1)" in result.output
        assert "+ A=1" in result.output
        assert "- C=4" in result.output
        assert "~ B" in result.output

    def test_markup_in_values_is_literal(self, invoke, project, cwd):
        _push(invoke, cwd, "A=[bold]x[/bold]")
        (cwd / ".env.shared").write_text("")
        result = invoke("diff")
        assert "A=[bold]x[/bold]" in result.output


class TestLog:
    """Tests for `envrelay log`."""

    def test_empty(self, invoke, project):
        result = invoke("log")
        assert result.exit_code == 0, result.output
        assert "No history found" in result.output

    def test_lists_versions(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1", "-m", "first")
        _push(invoke, cwd, "A=2")
        result = invoke("log")
        assert result.exit_code == 0, result.output
        assert "v2" in result.output
        assert "first" in result.output
        assert "no message" in result.output

    def test_all(self, invoke, project, cwd, relay):
        for i in range(3):
            _push(invoke, cwd, f"A={i}")
        result = invoke("log", "--all")
        assert result.exit_code == 0, result.output
        assert "v1" in result.output


class TestRollback:
    """Tests for `envrelay rollback`."""

    def test_rollback_yes(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1")
        _push(invoke, cwd, "A=2")
        result = invoke("rollback", "1", "--yes")
        assert result.exit_code == 0, result.output
        assert "Rolled back to v1 (pushed as v3)" in result.output
        assert (cwd / ".env.shared").read_text() == "A=1"
        assert Workspace(cwd).require().last_pushed_version == 3

    def test_rollback_fetches_target_once(self, invoke, project, cwd, relay):
        _push(invoke, cwd, "A=1")
        _push(invoke, cwd, "A=2")
        relay.calls.clear()
        result = invoke("rollback", "1", "--yes")
        assert result.exit_code == 0, result.output
        assert relay.calls.count("get_snapshot:1") == 1

    def test_rollback_declined(self, invoke, project, cwd, relay):
        _push(invoke, cwd, "A=1")
        _push(invoke, cwd, "A=2")
        result = invoke("rollback", "1", input="n\n")
        assert result.exit_code == 0, result.output
        assert "~ A" in result.output
        assert "Rollback cancelled." in result.output
        assert len(relay.snapshots[project.project_id]) == 2

    def test_rollback_missing_version(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1")
        result = invoke("rollback", "9", "--yes")
        assert result.exit_code == 1
        assert "Rollback failed" in result.output

    def test_rollback_rejects_zero(self, invoke, project):
        result = invoke("rollback", "0")
        assert result.exit_code == 2


class TestProjects:
    """Tests for list, switch, invite and members."""

    def test_list(self, invoke, project):
        result = invoke("list")
        assert result.exit_code == 0, result.output
        assert "my-app" in result.output
        assert "*" in result.output

    def test_list_empty(self, invoke, logged_in):
        result = invoke("list")
        assert "No projects found" in result.output

    def test_switch_pulls(self, invoke, project, cwd, relay, keystore, alice):
        from envrelay.distribution import create_project

        other, key = create_project(relay, keystore, alice, "Other")
        SnapshotService(relay, other.id, key).push("OTHER=1")
        result = invoke("switch", "other")
        assert result.exit_code == 0, result.output
        assert "Switched to Other (other)" in result.output
        assert Workspace(cwd).require().project_id == other.id
        assert (cwd / ".env.shared").read_text() == "OTHER=1"

    def test_switch_without_key(self, invoke, project, cwd, relay, keystore, alice):
        from envrelay.distribution import create_project

        other, _ = create_project(relay, keystore, alice, "Other")
        keystore.project_key_path(other.id).unlink()
        result = invoke("switch", "other")
        assert result.exit_code == 0, result.output
        assert "No project key found" in result.output

    def test_switch_unknown(self, invoke, project):
        result = invoke("switch", "nope")
        assert result.exit_code == 1

    def test_invite_known_user(self, invoke, project, relay):
        result = invoke("invite", "bob@example.com", "--role", "readonly")
        assert result.exit_code == 0, result.output
        assert "Invitation sent to bob@example.com (readonly)" in result.output
        assert "Project key shared" in result.output
        assert (project.project_id, "bob") in relay.envelopes

    def test_invite_bad_role(self, invoke, project):
        result = invoke("invite", "x@example.com", "--role", "admin")
        assert result.exit_code == 2

    def test_members(self, invoke, project):
        invoke("invite", "bob@example.com")
        invoke("invite", "new@example.com")
        result = invoke("members")
        assert result.exit_code == 0, result.output
        assert "bob@example.com" in result.output
        assert "Pending Invitations" in result.output
        assert "new@example.com" in result.output


class TestKeysSync:
    """Tests for `envrelay keys sync`."""

    def test_new_member_receives_key(self, invoke, project, cwd, relay, bob, tmp_path, keystore):
        relay.add_member(project.project_id, "bob")
        _push(invoke, cwd, "A=1")

        bob_home = tmp_path / "bob-home"
        KeyStore(bob_home).save_identity(bob)
        ConfigStore(bob_home).save(auth_token="tok-b", user_id="bob")
        relay.acting_as = "bob"
        result = invoke("keys", "sync", home_dir=bob_home)
        assert result.exit_code == 0, result.output
        assert "Received project key for my-app." in result.output
        assert KeyStore(bob_home).load_project_key(project.project_id) == (
            keystore.load_project_key(project.project_id)
        )

    def test_shares_with_pending(self, invoke, project, relay):
        relay.add_member(project.project_id, "bob")
        result = invoke("keys", "sync")
        assert result.exit_code == 0, result.output
        assert "Keys in sync (1 pending member)" in result.output

    def test_no_envelope_yet(self, invoke, project, relay, bob, tmp_path):
        relay.add_member(project.project_id, "bob")
        bob_home = tmp_path / "bob-home"
        KeyStore(bob_home).save_identity(bob)
        ConfigStore(bob_home).save(user_id="bob")
        relay.acting_as = "bob"
        result = invoke("keys", "sync", home_dir=bob_home)
        assert result.exit_code == 1
        assert "Key sync failed" in result.output


class TestAuthCommands:
    """Tests for login, logout and whoami."""

    def test_login(self, invoke, relay, keystore, config_store):
        relay.acting_as = "carol"
        opened = []

        def approve(seconds):
            for code in relay.device_codes:
                relay.device_codes[code] = DeviceStatus(
                    status="approved", token="tok-c", userId="carol", email="carol@example.com",
                )

        result = invoke("login", open_browser=opened.append, sleep=approve)
        assert result.exit_code == 0, result.output
        assert "Logged in as carol@example.com" in result.output
        assert "new identity key" in result.output
        assert "/auth/device?code=" in opened[0]
        assert config_store.load_persisted().auth_token == "tok-c"
        assert keystore.has_identity()

    def test_login_expired(self, invoke, relay):
        result = invoke("login", open_browser=lambda url: None, sleep=lambda s: relay.device_codes.clear())
        assert result.exit_code == 1
        assert "expired" in result.output

    def test_logout(self, invoke, logged_in, config_store, keystore):
        result = invoke("logout")
        assert result.exit_code == 0, result.output
        assert config_store.load_persisted().auth_token is None
        assert keystore.has_identity()

    def test_whoami(self, invoke, logged_in):
        result = invoke("whoami")
        assert result.exit_code == 0, result.output
        assert "alice@example.com (alice)" in result.output

    def test_whoami_unauthorized(self, invoke, relay, monkeypatch):
        def reject():
            raise Unauthorized()

        monkeypatch.setattr(relay, "whoami", reject)
        result = invoke("whoami")
        assert result.exit_code == 1
        assert "Not logged in" in result.output


class TestWatchCommand:
    """Tests for `envrelay start`."""

    def test_requires_workspace(self, invoke, logged_in):
        result = invoke("start")
        assert result.exit_code == 1
        assert ".envrelay.json" in result.output


class TestAuditTrail:
    """Commands leave an audit trail without secrets."""

    def test_push_is_audited(self, invoke, project, cwd, home):
        from envrelay.audit import ENV_PUSH, read_audit_log

        _push(invoke, cwd, "SECRET=hunter2")
        entries = read_audit_log(home, event_type=ENV_PUSH)
        assert entries[-1].metadata["version"] == 1
        assert "hunter2" not in (home / "audit.log").read_text()

    def test_audit_command_lists_entries(self, invoke, project, cwd):
        _push(invoke, cwd, "SECRET=hunter2")
        result = invoke("audit")
        assert result.exit_code == 0, result.output
        assert "PROJECT_CREATE" in result.output
        assert "ENV_PUSH" in result.output
        assert "entries" in result.output
        assert "hunter2" not in result.output

    def test_audit_command_filters_by_type(self, invoke, project, cwd):
        _push(invoke, cwd, "A=1")
        result = invoke("audit", "--type", "LOGIN")
        assert result.exit_code == 0, result.output
        assert "No audit entries found." in result.output


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "envrelay" in result.output
