"""
Key distribution — getting the project key to every member without the
relay ever seeing it.

Whoever holds the project key wraps it for a member's public identity
and uploads only the envelope. Three moments trigger that:

1. Project creation: the creator wraps the fresh key for themselves.
2. Invitation: if the invitee already has a registered identity, wrap
   immediately.
3. Pending-key sync: after every push and pull, any member the relay
   reports as still lacking an envelope gets one.

Sync is best-effort. Each member is attempted independently and a
failure for one never aborts the others or the push/pull around it.
Members left out stay pending on the relay and are retried the next time
anybody with the key runs a push or pull.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .crypto import Identity, generate_symmetric_key, unwrap_key, wrap_key
from .errors import PartialDistributionFailure, RelayError
from .keystore import KeyStore
from .models import Invitation, Project
from .relay import Relay

logger = logging.getLogger("envrelay.distribution")


@dataclass
class DistributionReport:
    """Outcome of one pending-key sync pass.

    Attributes:
        pending: Members the relay reported as lacking an envelope.
        shared: User ids that received an envelope.
        failed: User ids whose wrap or upload failed.
    """

    pending: int = 0
    shared: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def failure(self) -> Optional[PartialDistributionFailure]:
        """Informational error describing failed shares, if any."""
        if not self.failed:
            return None
        return PartialDistributionFailure(shared=len(self.shared), failed=list(self.failed))


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumerics into ``-``, trim dashes."""
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


def create_project(
    relay: Relay,
    keystore: KeyStore,
    identity: Identity,
    name: str,
) -> tuple[Project, bytes]:
    """Create a project with a fresh key, self-wrapped for the creator.

    Only the envelope is uploaded. The raw key is persisted locally once
    the relay has accepted the project.

    Returns:
        The project as registered, and its key.

    Raises:
        ValueError: The name has no usable characters for a slug.
    """
    slug = slugify(name)
    if not slug:
        raise ValueError(f"Project name {name!r} does not produce a valid slug")

    project_key = generate_symmetric_key()
    envelope = wrap_key(project_key, identity.public_key, identity.secret_key)
    project = relay.create_project(name=name, slug=slug, encrypted_project_key=envelope)
    keystore.save_project_key(project.id, project_key)
    logger.info("Created project %s (%s)", project.slug, project.id)
    return project, project_key


def share_project_key(
    relay: Relay,
    project_id: str,
    member_id: str,
    member_public_b64: str,
    project_key: bytes,
    identity: Identity,
) -> None:
    """Wrap ``project_key`` for one member and upload the envelope."""
    try:
        recipient = base64.b64decode(member_public_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Member {member_id} has an undecodable public key") from exc
    envelope = wrap_key(project_key, recipient, identity.secret_key)
    relay.upload_member_key(project_id, member_id, envelope)
    logger.debug("Uploaded key envelope for %s on %s", member_id, project_id)


def sync_pending_keys(
    relay: Relay,
    project_id: str,
    project_key: bytes,
    identity: Identity,
) -> DistributionReport:
    """Give every pending member an envelope. Never raises.

    A failure to even list pending members yields an empty report.
    """
    report = DistributionReport()
    try:
        pending = relay.list_pending_keys(project_id)
    except Exception as exc:
        logger.warning("Could not list pending members for %s: %s", project_id, exc)
        return report

    report.pending = len(pending)
    for member in pending:
        try:
            share_project_key(
                relay, project_id, member.user_id, member.public_key, project_key, identity,
            )
        except Exception as exc:
            logger.warning("Key share with %s failed: %s", member.user_id, exc)
            report.failed.append(member.user_id)
        else:
            report.shared.append(member.user_id)

    if report.pending:
        logger.info(
            "Pending-key sync for %s: %d shared, %d failed",
            project_id, len(report.shared), len(report.failed),
        )
    return report


def receive_project_key(
    relay: Relay,
    keystore: KeyStore,
    identity: Identity,
    project_id: str,
    member_id: str,
) -> bytes:
    """Fetch our own envelope, unwrap it and store the project key.

    Raises:
        NotFound: Nobody has wrapped the key for us yet.
        AuthenticationFailure: The envelope does not open with our
            identity and the stated sender. Nothing is stored.
    """
    grant = relay.get_member_key(project_id, member_id)
    try:
        sender_public = base64.b64decode(grant.sender_public_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RelayError("Relay returned an undecodable sender public key") from exc
    project_key = unwrap_key(grant.encrypted_project_key, sender_public, identity.secret_key)
    keystore.save_project_key(project_id, project_key)
    logger.info("Received project key for %s", project_id)
    return project_key


def invite_member(
    relay: Relay,
    project_id: str,
    email: str,
    role: str = "member",
    project_key: Optional[bytes] = None,
    identity: Optional[Identity] = None,
) -> tuple[Invitation, bool]:
    """Invite ``email`` and wrap the key for them if the relay knows them.

    Returns:
        The invitation, and whether an envelope was uploaded. A failed
        immediate share is left to pending-key sync.
    """
    invitation = relay.create_invitation(project_id, email, role)
    if not (invitation.user_id and invitation.public_key and project_key and identity):
        return invitation, False
    try:
        share_project_key(
            relay, project_id, invitation.user_id, invitation.public_key, project_key, identity,
        )
    except Exception as exc:
        logger.warning("Immediate key share with %s failed: %s", email, exc)
        return invitation, False
    return invitation, True
