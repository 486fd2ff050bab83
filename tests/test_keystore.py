"""Tests for local key storage."""

from __future__ import annotations

import json
import stat

import pytest

from envrelay.crypto import generate_symmetric_key
from envrelay.keystore import KeyStore


def _mode(path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


class TestIdentity:
    """Tests for identity persistence."""

    def test_missing(self, keystore: KeyStore):
        assert not keystore.has_identity()
        assert keystore.load_identity() is None

    def test_save_and_load(self, keystore: KeyStore, alice):
        keystore.save_identity(alice)
        assert keystore.has_identity()
        assert keystore.load_identity() == alice

    def test_file_format(self, keystore: KeyStore, alice):
        path = keystore.save_identity(alice)
        data = json.loads(path.read_text())
        assert data == {"publicKey": alice.public_b64, "secretKey": alice.secret_b64}

    def test_owner_only(self, keystore: KeyStore, alice):
        path = keystore.save_identity(alice)
        assert _mode(path) == 0o600
        assert _mode(keystore.keys_dir) == 0o700

    def test_corrupt_file(self, keystore: KeyStore, alice):
        path = keystore.save_identity(alice)
        path.write_text("{not json")
        assert keystore.load_identity() is None

    def test_wrong_key_size(self, keystore: KeyStore, alice):
        path = keystore.save_identity(alice)
        path.write_text(json.dumps({"publicKey": "AAAA", "secretKey": "AAAA"}))
        assert keystore.load_identity() is None


class TestProjectKeys:
    """Tests for project key persistence."""

    def test_save_and_load(self, keystore: KeyStore):
        key = generate_symmetric_key()
        path = keystore.save_project_key("proj-1", key)
        assert keystore.has_project_key("proj-1")
        assert keystore.load_project_key("proj-1") == key
        assert _mode(path) == 0o600
        assert path.read_text().count("\n") == 1

    def test_missing(self, keystore: KeyStore):
        assert keystore.load_project_key("nope") is None

    def test_rejects_wrong_length(self, keystore: KeyStore):
        with pytest.raises(ValueError):
            keystore.save_project_key("proj-1", b"short")
        assert not keystore.has_project_key("proj-1")

    def test_garbage_file(self, keystore: KeyStore):
        keystore.save_project_key("proj-1", generate_symmetric_key())
        keystore.project_key_path("proj-1").write_text("@@@\n")
        assert keystore.load_project_key("proj-1") is None

    def test_overwrite(self, keystore: KeyStore):
        keystore.save_project_key("proj-1", generate_symmetric_key())
        newer = generate_symmetric_key()
        keystore.save_project_key("proj-1", newer)
        assert keystore.load_project_key("proj-1") == newer
