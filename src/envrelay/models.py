"""
Pydantic models for everything envrelay reads from or writes to disk
and the relay.

Wire objects use camelCase on the relay side; the aliases below keep the
Python attributes snake_case while accepting and emitting the relay's
field names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for relay payloads: accept aliases or field names, ignore extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Local state
# ---------------------------------------------------------------------------


class RelayConfig(BaseModel):
    """Global client configuration stored in ``<home>/config.yaml``."""

    api_base_url: str = "http://localhost:3000/api"
    auth_token: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    poll_interval: float = 10.0
    timeout: float = 30.0


class WorkspaceRecord(BaseModel):
    """Links a workspace directory to a relay project.

    ``last_pushed_version`` is advisory: it only feeds the conflict
    warning. The relay's counter is the authority.
    """

    project_id: str
    project_slug: str
    last_pushed_version: int = 0


# ---------------------------------------------------------------------------
# Relay payloads
# ---------------------------------------------------------------------------


class Project(WireModel):
    id: str
    slug: str
    name: str = ""
    role: Optional[str] = None
    member_count: Optional[int] = Field(default=None, alias="memberCount")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class Snapshot(WireModel):
    """One encrypted environment version as served by the relay."""

    encrypted_payload: Optional[str] = Field(default=None, alias="encryptedPayload")
    version: int = 0


class HistoryEntry(WireModel):
    version: int
    message: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    author: Optional[dict[str, Any]] = None
    author_id: Optional[str] = Field(default=None, alias="authorId")

    @property
    def author_label(self) -> str:
        """Best available name for whoever pushed this version."""
        if self.author:
            label = self.author.get("email") or self.author.get("id")
            if label:
                return str(label)
        return self.author_id or "unknown"


class HistoryPage(WireModel):
    snapshots: list[HistoryEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20


class Member(WireModel):
    user_id: str = Field(alias="userId")
    id: Optional[str] = None
    email: Optional[str] = None
    role: str = "member"
    joined_at: Optional[datetime] = Field(default=None, alias="joinedAt")


class PendingMember(WireModel):
    """A confirmed member that has no key envelope yet."""

    user_id: str = Field(alias="userId")
    public_key: str = Field(alias="publicKey")


class KeyGrant(WireModel):
    """An envelope addressed to us, plus who wrapped it."""

    encrypted_project_key: str = Field(alias="encryptedProjectKey")
    sender_public_key: str = Field(alias="senderPublicKey")


class Invitation(WireModel):
    id: str = ""
    email: str
    role: str = "member"
    accepted: bool = False
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    # present when the invitee already has a registered identity
    user_id: Optional[str] = Field(default=None, alias="userId")
    public_key: Optional[str] = Field(default=None, alias="publicKey")

    def is_pending(self, now: Optional[datetime] = None) -> bool:
        """True while the invitation is unaccepted and unexpired."""
        if self.accepted:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires > now


class DeviceStatus(WireModel):
    status: str = "pending"
    token: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    email: Optional[str] = None


class Me(WireModel):
    user_id: str = Field(alias="userId")
    email: Optional[str] = None
