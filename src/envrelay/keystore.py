"""
Local key storage.

The identity secret and every project key stay on this machine, in
owner-only files under ``<home>/keys/``:

- ``identity.key``: JSON ``{"publicKey": b64, "secretKey": b64}``
- ``<project_id>.key``: a single base64 line holding the 32-byte key
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .crypto import KEY_SIZE, Identity

logger = logging.getLogger("envrelay.keystore")

IDENTITY_FILE = "identity.key"


class KeyStore:
    """Owner-only persistence for the identity and per-project keys."""

    def __init__(self, home: Path) -> None:
        self.keys_dir = Path(home).expanduser() / "keys"

    def _ensure_dir(self) -> None:
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.keys_dir, 0o700)

    def _write_secret(self, path: Path, content: str) -> None:
        self._ensure_dir()
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(path, 0o600)

    # -- identity ---------------------------------------------------------

    @property
    def identity_path(self) -> Path:
        return self.keys_dir / IDENTITY_FILE

    def has_identity(self) -> bool:
        return self.identity_path.exists()

    def save_identity(self, identity: Identity) -> Path:
        payload = {"publicKey": identity.public_b64, "secretKey": identity.secret_b64}
        self._write_secret(self.identity_path, json.dumps(payload, indent=2))
        logger.info("Stored identity %s", identity.public_b64)
        return self.identity_path

    def load_identity(self) -> Optional[Identity]:
        """Return the stored identity, or None if absent or unreadable."""
        if not self.identity_path.exists():
            return None
        try:
            data = json.loads(self.identity_path.read_text(encoding="utf-8"))
            identity = Identity.from_b64(data["publicKey"], data["secretKey"])
        except (OSError, json.JSONDecodeError, KeyError, TypeError, binascii.Error) as exc:
            logger.warning("Identity file %s is unreadable: %s", self.identity_path, exc)
            return None
        if len(identity.public_key) != KEY_SIZE or len(identity.secret_key) != KEY_SIZE:
            logger.warning("Identity file %s has wrong key sizes", self.identity_path)
            return None
        return identity

    # -- project keys -----------------------------------------------------

    def project_key_path(self, project_id: str) -> Path:
        return self.keys_dir / f"{project_id}.key"

    def has_project_key(self, project_id: str) -> bool:
        return self.project_key_path(project_id).exists()

    def save_project_key(self, project_id: str, key: bytes) -> Path:
        if len(key) != KEY_SIZE:
            raise ValueError(f"project key must be exactly {KEY_SIZE} bytes")
        path = self.project_key_path(project_id)
        self._write_secret(path, base64.b64encode(key).decode("ascii") + "\n")
        logger.debug("Stored project key for %s", project_id)
        return path

    def load_project_key(self, project_id: str) -> Optional[bytes]:
        path = self.project_key_path(project_id)
        if not path.exists():
            return None
        try:
            key = base64.b64decode(path.read_text(encoding="utf-8").strip(), validate=True)
        except (OSError, binascii.Error, ValueError) as exc:
            logger.warning("Project key %s is unreadable: %s", path, exc)
            return None
        if len(key) != KEY_SIZE:
            logger.warning("Project key %s has wrong length %d", path, len(key))
            return None
        return key
