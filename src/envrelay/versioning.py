"""
Snapshot versioning — push, pull, rollback and history of sealed
environments.

The relay keeps an append-only list of snapshots and assigns versions
1, 2, 3, ... atomically. Nothing here ever edits or deletes a version:
a rollback re-seals an old version's plaintext and pushes it as the new
head.

Conflict detection is optimistic and advisory. Before a push the relay's
head version is compared to the version this workspace last pushed; if
someone else pushed since, the caller is asked to confirm. The check
cannot see a push that lands between the check and the upload, and a
workspace that has never pushed is never warned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .crypto import decrypt_env, encrypt_env
from .errors import Conflict, NotFound, RelayError, WorkspaceError
from .models import HistoryEntry, HistoryPage
from .relay import Relay

logger = logging.getLogger("envrelay.versioning")

ConfirmFn = Callable[[Conflict], bool]

DEFAULT_PAGE_SIZE = 20
FULL_PAGE_SIZE = 100


@dataclass(frozen=True)
class PulledEnv:
    plaintext: str
    version: int


@dataclass(frozen=True)
class RollbackResult:
    """A rollback: which version was restored and what it became."""

    target_version: int
    new_version: int
    plaintext: str


class SnapshotService:
    """Versioned, sealed environment storage for one project.

    Args:
        relay: Relay to talk to.
        project_id: Relay project id.
        project_key: The 32-byte project key. May be omitted when only
            history is read.
    """

    def __init__(
        self, relay: Relay, project_id: str, project_key: Optional[bytes] = None,
    ) -> None:
        self._relay = relay
        self.project_id = project_id
        self._key = project_key

    @property
    def key(self) -> bytes:
        if self._key is None:
            raise WorkspaceError("No project key found. You may need to be invited to this project.")
        return self._key

    def current_version(self) -> int:
        return self._relay.get_version(self.project_id)

    def check_conflict(self, last_known_version: int) -> Optional[Conflict]:
        """Compare the relay head with ``last_known_version``.

        A failing version check is logged and treated as no conflict.
        """
        try:
            remote = self.current_version()
        except (RelayError, NotFound) as exc:
            logger.warning("Version check failed, pushing anyway: %s", exc)
            return None
        if remote > last_known_version > 0:
            return Conflict(remote_version=remote, local_version=last_known_version)
        return None

    def push(
        self,
        plaintext: str,
        last_known_version: int = 0,
        force: bool = False,
        message: Optional[str] = None,
        confirm: Optional[ConfirmFn] = None,
    ) -> int:
        """Seal ``plaintext`` and append it as a new version.

        Args:
            plaintext: The environment document.
            last_known_version: Version this workspace last pushed (0 if never).
            force: Skip the conflict check.
            message: Optional message stored with the version.
            confirm: Called with the ``Conflict`` when the relay is ahead;
                return True to push anyway.

        Returns:
            The version the relay assigned.

        Raises:
            Conflict: The relay is ahead and the push was not confirmed.
                Nothing was uploaded.
        """
        if not force:
            conflict = self.check_conflict(last_known_version)
            if conflict is not None and not (confirm and confirm(conflict)):
                raise conflict

        payload = encrypt_env(plaintext, self.key)
        version = self._relay.push_snapshot(self.project_id, payload, message=message)
        logger.info("Pushed %s v%d", self.project_id, version)
        return version

    def pull(self) -> PulledEnv:
        """Fetch and open the latest snapshot.

        Raises:
            NotFound: The project has no snapshot yet.
            AuthenticationFailure: The snapshot does not open with our key.
        """
        snapshot = self._relay.get_latest(self.project_id)
        if not snapshot.encrypted_payload:
            raise NotFound("No environment snapshot found. Run `envrelay push` first.")
        plaintext = decrypt_env(snapshot.encrypted_payload, self.key)
        logger.debug("Pulled %s v%d", self.project_id, snapshot.version)
        return PulledEnv(plaintext=plaintext, version=snapshot.version)

    def fetch(self, version: int) -> str:
        """Open one historical snapshot."""
        snapshot = self._relay.get_snapshot(self.project_id, version)
        if not snapshot.encrypted_payload:
            raise NotFound(f"Version {version} not found.")
        return decrypt_env(snapshot.encrypted_payload, self.key)

    def rollback(
        self, target_version: int, plaintext: Optional[str] = None,
    ) -> RollbackResult:
        """Push the content of ``target_version`` as a new head version.

        History is left untouched; the restored content gets a fresh
        version number and the message ``Rollback to v{N}``.

        Args:
            target_version: Version to restore.
            plaintext: Its already opened content, when the caller has
                fetched it (e.g. to preview it). Fetched otherwise.
        """
        if target_version < 1:
            raise ValueError("Version must be a positive integer.")
        if plaintext is None:
            plaintext = self.fetch(target_version)
        new_version = self.push(
            plaintext, force=True, message=f"Rollback to v{target_version}",
        )
        return RollbackResult(
            target_version=target_version, new_version=new_version, plaintext=plaintext,
        )

    def history(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> HistoryPage:
        return self._relay.get_history(self.project_id, page=page, limit=limit)

    def history_all(self, limit: int = FULL_PAGE_SIZE) -> list[HistoryEntry]:
        """Walk every history page until the reported total is reached."""
        entries: list[HistoryEntry] = []
        page = 1
        while True:
            result = self.history(page=page, limit=limit)
            if not result.snapshots:
                break
            entries.extend(result.snapshots)
            if len(entries) >= result.total:
                break
            page += 1
        return entries
