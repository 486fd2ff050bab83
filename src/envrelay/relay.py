"""
Relay — the untrusted server that stores ciphertext and membership.

``Relay`` is the capability interface: exactly the calls envrelay needs,
nothing else. ``HttpRelay`` implements it over the REST API. Tests
substitute an in-memory implementation.

The relay never receives a plaintext environment or a bare project key;
everything crossing this boundary is either public metadata, a sealed
snapshot, or a key envelope.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from .errors import NotFound, RelayError, RelayUnavailable, Unauthorized
from .models import (
    DeviceStatus,
    HistoryPage,
    Invitation,
    KeyGrant,
    Me,
    Member,
    PendingMember,
    Project,
    Snapshot,
)

logger = logging.getLogger("envrelay.relay")

DEFAULT_TIMEOUT = 30.0


class Relay:
    """Abstract relay capability.

    Each method maps to one call of the relay contract. Implementations
    raise ``Unauthorized`` for rejected credentials, ``NotFound`` for
    missing resources and ``RelayError`` for everything else.
    """

    # -- projects ----------------------------------------------------------

    def create_project(self, name: str, slug: str, encrypted_project_key: str) -> Project:
        """Register a project together with the creator's own key envelope."""
        raise NotImplementedError

    def list_projects(self) -> list[Project]:
        raise NotImplementedError

    # -- environment snapshots --------------------------------------------

    def push_snapshot(
        self, project_id: str, encrypted_payload: str, message: Optional[str] = None,
    ) -> int:
        """Append a sealed snapshot. Returns the version the relay assigned."""
        raise NotImplementedError

    def get_latest(self, project_id: str) -> Snapshot:
        raise NotImplementedError

    def get_version(self, project_id: str) -> int:
        """Cheap check of the current head version (0 when empty)."""
        raise NotImplementedError

    def get_snapshot(self, project_id: str, version: int) -> Snapshot:
        raise NotImplementedError

    def get_history(self, project_id: str, page: int = 1, limit: int = 20) -> HistoryPage:
        raise NotImplementedError

    # -- membership and key distribution ----------------------------------

    def list_members(self, project_id: str) -> list[Member]:
        raise NotImplementedError

    def list_pending_keys(self, project_id: str) -> list[PendingMember]:
        """Members that are confirmed but hold no key envelope yet."""
        raise NotImplementedError

    def upload_member_key(
        self, project_id: str, member_id: str, encrypted_project_key: str,
    ) -> None:
        raise NotImplementedError

    def get_member_key(self, project_id: str, member_id: str) -> KeyGrant:
        raise NotImplementedError

    def create_invitation(self, project_id: str, email: str, role: str = "member") -> Invitation:
        raise NotImplementedError

    def list_invitations(self, project_id: str) -> list[Invitation]:
        raise NotImplementedError

    # -- authentication ---------------------------------------------------

    def start_device_login(self, code: str) -> None:
        raise NotImplementedError

    def device_status(self, code: str) -> DeviceStatus:
        raise NotImplementedError

    def register_public_key(self, public_key: str) -> None:
        raise NotImplementedError

    def whoami(self) -> Me:
        raise NotImplementedError


class HttpRelay(Relay):
    """Relay implementation over HTTP(S) using ``requests``.

    Args:
        base_url: API root, e.g. ``https://relay.example.com/api``.
        token: Bearer token, if logged in.
        timeout: Per-request timeout in seconds.
        session: Optional pre-built ``requests.Session`` (tests inject one).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make one API call and return the decoded JSON body.

        Raises:
            Unauthorized: HTTP 401.
            NotFound: HTTP 404.
            RelayError: Any other error status.
            RelayUnavailable: Connection failure or timeout.
        """
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.debug("%s %s", method, path)
        try:
            resp = self._session.request(
                method,
                url,
                headers=headers,
                json=data,
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise RelayUnavailable(f"Relay unreachable: {exc}") from exc

        if resp.status_code == 401:
            raise Unauthorized()
        if resp.status_code >= 400:
            message = _error_message(resp)
            if resp.status_code == 404:
                raise NotFound(message or f"Not found: {path}")
            raise RelayError(
                f"{method} {path}: {resp.status_code} {message}".rstrip(),
                status_code=resp.status_code,
            )

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise RelayError(
                f"{method} {path}: invalid JSON response", status_code=resp.status_code,
            ) from exc

    # -- projects ----------------------------------------------------------

    def create_project(self, name: str, slug: str, encrypted_project_key: str) -> Project:
        body = {"name": name, "slug": slug, "encryptedProjectKey": encrypted_project_key}
        result = self._request("POST", "/projects", data=body)
        result.setdefault("name", name)
        return Project.model_validate(result)

    def list_projects(self) -> list[Project]:
        result = self._request("GET", "/projects")
        # the relay answers either a bare list or {"projects": [...]}
        items = result if isinstance(result, list) else result.get("projects") or []
        return [Project.model_validate(p) for p in items]

    # -- environment snapshots --------------------------------------------

    def push_snapshot(
        self, project_id: str, encrypted_payload: str, message: Optional[str] = None,
    ) -> int:
        body: dict[str, Any] = {"encryptedPayload": encrypted_payload}
        if message:
            body["message"] = message
        result = self._request("POST", f"/projects/{project_id}/env", data=body)
        return int(result["version"])

    def get_latest(self, project_id: str) -> Snapshot:
        return Snapshot.model_validate(self._request("GET", f"/projects/{project_id}/env"))

    def get_version(self, project_id: str) -> int:
        result = self._request("GET", f"/projects/{project_id}/env/version")
        return int(result.get("version") or 0)

    def get_snapshot(self, project_id: str, version: int) -> Snapshot:
        return Snapshot.model_validate(
            self._request("GET", f"/projects/{project_id}/env/{version}")
        )

    def get_history(self, project_id: str, page: int = 1, limit: int = 20) -> HistoryPage:
        result = self._request(
            "GET",
            f"/projects/{project_id}/env/history",
            params={"page": page, "limit": limit},
        )
        return HistoryPage.model_validate(result)

    # -- membership and key distribution ----------------------------------

    def list_members(self, project_id: str) -> list[Member]:
        result = self._request("GET", f"/projects/{project_id}/members")
        return [Member.model_validate(m) for m in result or []]

    def list_pending_keys(self, project_id: str) -> list[PendingMember]:
        result = self._request("GET", f"/projects/{project_id}/members/pending-keys")
        return [PendingMember.model_validate(m) for m in result or []]

    def upload_member_key(
        self, project_id: str, member_id: str, encrypted_project_key: str,
    ) -> None:
        self._request(
            "POST",
            f"/projects/{project_id}/members/{member_id}/key",
            data={"encryptedProjectKey": encrypted_project_key},
        )

    def get_member_key(self, project_id: str, member_id: str) -> KeyGrant:
        return KeyGrant.model_validate(
            self._request("GET", f"/projects/{project_id}/members/{member_id}/key")
        )

    def create_invitation(self, project_id: str, email: str, role: str = "member") -> Invitation:
        result = self._request(
            "POST",
            f"/projects/{project_id}/invitations",
            data={"email": email, "role": role},
        )
        return Invitation.model_validate(result)

    def list_invitations(self, project_id: str) -> list[Invitation]:
        result = self._request("GET", f"/projects/{project_id}/invitations")
        return [Invitation.model_validate(i) for i in result or []]

    # -- authentication ---------------------------------------------------

    def start_device_login(self, code: str) -> None:
        self._request("POST", "/cli/device", data={"code": code})

    def device_status(self, code: str) -> DeviceStatus:
        return DeviceStatus.model_validate(
            self._request("GET", f"/cli/device/{code}/status")
        )

    def register_public_key(self, public_key: str) -> None:
        self._request("POST", "/cli/keys", data={"publicKey": public_key})

    def whoami(self) -> Me:
        return Me.model_validate(self._request("GET", "/cli/me"))


def _error_message(resp: requests.Response) -> str:
    """Pull a readable message out of an error response body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or resp.text).strip()
    return resp.text.strip()
