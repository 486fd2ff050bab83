"""Shared test fixtures for envrelay."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from envrelay.config import ConfigStore
from envrelay.crypto import Identity, generate_identity
from envrelay.errors import NotFound, RelayError
from envrelay.keystore import KeyStore
from envrelay.models import (
    DeviceStatus,
    HistoryEntry,
    HistoryPage,
    Invitation,
    KeyGrant,
    Me,
    Member,
    PendingMember,
    Project,
    Snapshot,
)
from envrelay.relay import Relay


class InMemoryRelay(Relay):
    """A relay that keeps everything in dicts.

    ``acting_as`` is the user id of whoever is calling; it decides whose
    envelope is created and which public key is recorded as sender.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.acting_as: Optional[str] = None
        self.projects: dict[str, Project] = {}
        self.members: dict[str, list[Member]] = {}
        self.envelopes: dict[tuple[str, str], KeyGrant] = {}
        self.snapshots: dict[str, list[dict]] = {}
        self.invitations: dict[str, list[Invitation]] = {}
        self.device_codes: dict[str, DeviceStatus] = {}
        self.fail_uploads_for: set[str] = set()
        self.fail_pending_list = False
        self.fail_version_check = False
        self.calls: list[str] = []

    # -- test helpers -----------------------------------------------------

    def register_user(self, user_id: str, identity: Identity, email: Optional[str] = None) -> None:
        self.users[user_id] = {"public_key": identity.public_b64, "email": email or f"{user_id}@example.com"}

    def add_member(self, project_id: str, user_id: str, role: str = "member") -> None:
        """Confirm membership without an envelope, as accepting an invite does."""
        self.members[project_id].append(
            Member(userId=user_id, email=self.users[user_id]["email"], role=role)
        )

    def _sender_public(self) -> str:
        return self.users[self.acting_as]["public_key"]

    # -- projects ----------------------------------------------------------

    def create_project(self, name, slug, encrypted_project_key):
        self.calls.append("create_project")
        project_id = f"proj-{len(self.projects) + 1}"
        project = Project(id=project_id, slug=slug, name=name, role="owner")
        self.projects[project_id] = project
        self.members[project_id] = [
            Member(userId=self.acting_as, email=self.users[self.acting_as]["email"], role="owner")
        ]
        self.snapshots[project_id] = []
        self.invitations[project_id] = []
        self.envelopes[(project_id, self.acting_as)] = KeyGrant(
            encryptedProjectKey=encrypted_project_key, senderPublicKey=self._sender_public(),
        )
        return project

    def list_projects(self):
        return list(self.projects.values())

    # -- environment snapshots --------------------------------------------

    def push_snapshot(self, project_id, encrypted_payload, message=None):
        self.calls.append("push_snapshot")
        history = self.snapshots[project_id]
        history.append({"payload": encrypted_payload, "message": message, "author": self.acting_as})
        return len(history)

    def get_latest(self, project_id):
        history = self.snapshots.get(project_id)
        if history is None:
            raise NotFound("project not found")
        if not history:
            return Snapshot(encryptedPayload=None, version=0)
        return Snapshot(encryptedPayload=history[-1]["payload"], version=len(history))

    def get_version(self, project_id):
        self.calls.append("get_version")
        if self.fail_version_check:
            raise RelayError("version endpoint down", status_code=503)
        return len(self.snapshots[project_id])

    def get_snapshot(self, project_id, version):
        self.calls.append(f"get_snapshot:{version}")
        history = self.snapshots[project_id]
        if not 1 <= version <= len(history):
            raise NotFound(f"Version {version} not found.")
        return Snapshot(encryptedPayload=history[version - 1]["payload"], version=version)

    def get_history(self, project_id, page=1, limit=20):
        self.calls.append(f"get_history:{page}")
        history = self.snapshots[project_id]
        entries = [
            HistoryEntry(version=i + 1, message=s["message"], authorId=s["author"])
            for i, s in enumerate(history)
        ][::-1]
        start = (page - 1) * limit
        return HistoryPage(
            snapshots=entries[start:start + limit], total=len(entries), page=page, limit=limit,
        )

    # -- membership and key distribution ----------------------------------

    def list_members(self, project_id):
        return list(self.members[project_id])

    def list_pending_keys(self, project_id):
        self.calls.append("list_pending_keys")
        if self.fail_pending_list:
            raise RelayError("pending-keys endpoint down", status_code=500)
        return [
            PendingMember(userId=m.user_id, publicKey=self.users[m.user_id]["public_key"])
            for m in self.members[project_id]
            if (project_id, m.user_id) not in self.envelopes
        ]

    def upload_member_key(self, project_id, member_id, encrypted_project_key):
        self.calls.append(f"upload_member_key:{member_id}")
        if member_id in self.fail_uploads_for:
            raise RelayError("upload rejected", status_code=500)
        self.envelopes[(project_id, member_id)] = KeyGrant(
            encryptedProjectKey=encrypted_project_key, senderPublicKey=self._sender_public(),
        )

    def get_member_key(self, project_id, member_id):
        grant = self.envelopes.get((project_id, member_id))
        if grant is None:
            raise NotFound("No key envelope for this member yet")
        return grant

    def create_invitation(self, project_id, email, role="member"):
        known = next((uid for uid, u in self.users.items() if u["email"] == email), None)
        invitation = Invitation(
            id=f"inv-{len(self.invitations[project_id]) + 1}",
            email=email,
            role=role,
            userId=known,
            publicKey=self.users[known]["public_key"] if known else None,
        )
        self.invitations[project_id].append(invitation)
        if known:
            self.add_member(project_id, known, role)
        return invitation

    def list_invitations(self, project_id):
        return list(self.invitations[project_id])

    # -- authentication ---------------------------------------------------

    def start_device_login(self, code):
        self.device_codes[code] = DeviceStatus(status="pending")

    def device_status(self, code):
        status = self.device_codes.get(code)
        if status is None:
            raise NotFound("expired")
        return status

    def register_public_key(self, public_key):
        self.calls.append("register_public_key")
        self.users.setdefault(self.acting_as, {"email": f"{self.acting_as}@example.com"})
        self.users[self.acting_as]["public_key"] = public_key

    def whoami(self):
        return Me(userId=self.acting_as, email=self.users[self.acting_as]["email"])


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A temporary envrelay home directory."""
    home = tmp_path / ".envrelay"
    home.mkdir()
    return home


@pytest.fixture
def keystore(home: Path) -> KeyStore:
    return KeyStore(home)


@pytest.fixture
def config_store(home: Path) -> ConfigStore:
    return ConfigStore(home)


@pytest.fixture
def alice() -> Identity:
    return generate_identity()


@pytest.fixture
def bob() -> Identity:
    return generate_identity()


@pytest.fixture
def relay(alice: Identity, bob: Identity) -> InMemoryRelay:
    """An in-memory relay with alice and bob registered, acting as alice."""
    relay = InMemoryRelay()
    relay.register_user("alice", alice)
    relay.register_user("bob", bob)
    relay.acting_as = "alice"
    return relay


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    path = tmp_path / "app"
    path.mkdir()
    return path
