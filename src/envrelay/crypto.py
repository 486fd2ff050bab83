"""
Envelope cryptography — the two layers that keep the relay blind.

Layer 1: the environment document is sealed with the project key using
XSalsa20-Poly1305 (NaCl ``SecretBox``). Cheap for any payload size.

Layer 2: the 32-byte project key is wrapped once per recipient with
Curve25519 + XSalsa20-Poly1305 (NaCl ``Box``). The shared secret comes
from X25519 key agreement between the sender's secret key and the
recipient's public key, so any two identities can exchange a key
without a pre-arranged channel.

Wire format for both layers:
    base64( nonce[24] || ciphertext || tag[16] )

Every call draws a fresh random nonce, so sealing the same input twice
never yields the same output.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Union

from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random

from .errors import AuthenticationFailure

KEY_SIZE = SecretBox.KEY_SIZE  # 32 bytes, 256 bits
NONCE_SIZE = SecretBox.NONCE_SIZE  # 24 bytes, 192 bits
MAC_SIZE = SecretBox.MACBYTES  # 16 bytes


@dataclass(frozen=True)
class Identity:
    """A member's long-lived X25519 keypair.

    Attributes:
        public_key: 32-byte public half, registered with the relay.
        secret_key: 32-byte secret half, never leaves this machine.
    """

    public_key: bytes
    secret_key: bytes

    @property
    def public_b64(self) -> str:
        return _b64(self.public_key)

    @property
    def secret_b64(self) -> str:
        return _b64(self.secret_key)

    @classmethod
    def from_b64(cls, public_b64: str, secret_b64: str) -> "Identity":
        """Rebuild an identity from its stored base64 halves."""
        return cls(
            public_key=base64.b64decode(public_b64),
            secret_key=base64.b64decode(secret_b64),
        )

    def __repr__(self) -> str:
        # keep the secret half out of logs and tracebacks
        return f"Identity(public_key={self.public_b64!r})"


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------


def generate_identity() -> Identity:
    """Create a fresh X25519 keypair from the OS CSPRNG."""
    sk = PrivateKey.generate()
    return Identity(public_key=bytes(sk.public_key), secret_key=bytes(sk))


def generate_symmetric_key() -> bytes:
    """Return 256 bits of cryptographically secure randomness."""
    return nacl_random(KEY_SIZE)


# ---------------------------------------------------------------------------
# Symmetric layer (environment payloads)
# ---------------------------------------------------------------------------


def encrypt_symmetric(plaintext: Union[bytes, str], key: bytes) -> str:
    """Seal ``plaintext`` under ``key`` with a fresh 192-bit nonce.

    Args:
        plaintext: Raw bytes, or text which is UTF-8 encoded.
        key: 32-byte project key.

    Returns:
        Base64 string of ``nonce || auth_ciphertext``.
    """
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    box = SecretBox(_check_key(key, "project key"))
    nonce = nacl_random(NONCE_SIZE)
    return _b64(bytes(box.encrypt(plaintext, nonce)))


def decrypt_symmetric(blob: str, key: bytes) -> bytes:
    """Verify and open a blob produced by :func:`encrypt_symmetric`.

    Raises:
        AuthenticationFailure: Wrong key, tampered, truncated or
            undecodable ciphertext. Callers must reject the data.
    """
    box = SecretBox(_check_key(key, "project key"))
    nonce, ciphertext = _split(blob)
    try:
        return box.decrypt(ciphertext, nonce)
    except CryptoError as exc:
        raise AuthenticationFailure(
            "Decryption failed. Invalid key or corrupted data."
        ) from exc


def encrypt_env(text: str, key: bytes) -> str:
    """Seal an environment document (UTF-8 text)."""
    return encrypt_symmetric(text.encode("utf-8"), key)


def decrypt_env(blob: str, key: bytes) -> str:
    """Open a sealed environment document back into text."""
    raw = decrypt_symmetric(blob, key)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AuthenticationFailure("Decrypted payload is not valid UTF-8") from exc


# ---------------------------------------------------------------------------
# Asymmetric layer (project key envelopes)
# ---------------------------------------------------------------------------


def wrap_key(payload: bytes, recipient_public: bytes, sender_secret: bytes) -> str:
    """Wrap ``payload`` for one recipient.

    Args:
        payload: The 32-byte project key.
        recipient_public: Recipient's X25519 public key.
        sender_secret: Sender's X25519 secret key.

    Returns:
        Base64 key envelope ``nonce || auth_ciphertext``.
    """
    box = Box(
        PrivateKey(_check_key(sender_secret, "sender secret key")),
        PublicKey(_check_key(recipient_public, "recipient public key")),
    )
    nonce = nacl_random(NONCE_SIZE)
    return _b64(bytes(box.encrypt(payload, nonce)))


def unwrap_key(envelope: str, sender_public: bytes, recipient_secret: bytes) -> bytes:
    """Open a key envelope produced by :func:`wrap_key`.

    Raises:
        AuthenticationFailure: The key pair does not match the one used to
            wrap, or the envelope was tampered with. Never returns garbage.
    """
    box = Box(
        PrivateKey(_check_key(recipient_secret, "recipient secret key")),
        PublicKey(_check_key(sender_public, "sender public key")),
    )
    nonce, ciphertext = _split(envelope)
    try:
        return box.decrypt(ciphertext, nonce)
    except CryptoError as exc:
        raise AuthenticationFailure("Failed to decrypt project key.") from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _check_key(key: bytes, label: str) -> bytes:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise ValueError(f"{label} must be exactly {KEY_SIZE} bytes")
    return bytes(key)


def _split(blob: str) -> tuple[bytes, bytes]:
    """Decode a base64 blob and split off the nonce prefix."""
    try:
        combined = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise AuthenticationFailure("Ciphertext is not valid base64") from exc
    if len(combined) < NONCE_SIZE + MAC_SIZE:
        raise AuthenticationFailure("Ciphertext too short to contain nonce and tag")
    return combined[:NONCE_SIZE], combined[NONCE_SIZE:]
