"""
Exceptions for envrelay.

Everything raised on purpose derives from EnvRelayError so the CLI has a
single place to catch and report failures.
"""

from __future__ import annotations

from typing import Optional


class EnvRelayError(Exception):
    # general container for errors
    pass


class AuthenticationFailure(EnvRelayError):
    # raised when a ciphertext or key envelope does not verify (wrong key or tampered data)
    pass


class NotFound(EnvRelayError):
    # raised when a project, snapshot or version does not exist
    pass


class WorkspaceError(EnvRelayError):
    # raised when the local workspace lacks a record, mirror file, identity or project key
    pass


class RelayError(EnvRelayError):
    """The relay answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Unauthorized(RelayError):
    """The relay rejected our credentials (HTTP 401)."""

    def __init__(self, message: str = "Session expired. Please run `envrelay login`."):
        super().__init__(message, status_code=401)


class RelayUnavailable(RelayError):
    # raised on connection errors and timeouts
    pass


class Conflict(EnvRelayError):
    """The relay holds a newer version than this workspace last pushed.

    Advisory only: the caller may confirm and push anyway.
    """

    def __init__(self, remote_version: int, local_version: int):
        self.remote_version = remote_version
        self.local_version = local_version
        super().__init__(
            f"Server has v{remote_version}, you last pushed v{local_version}. "
            "You may be overwriting changes."
        )


class PartialDistributionFailure(EnvRelayError):
    """Some pending members could not be sent the project key.

    Never raised out of a push or pull; carried on the distribution report
    so the caller can show it as a note.
    """

    def __init__(self, shared: int, failed: list[str]):
        self.shared = shared
        self.failed = list(failed)
        total = shared + len(self.failed)
        super().__init__(
            f"key sharing failed for {len(self.failed)} of {total} member"
            f"{'s' if total != 1 else ''}"
        )
