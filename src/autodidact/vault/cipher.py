"""AES-GCM sealing of a single secret string under a session-derived key."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
_FINGERPRINT_LABEL = b"autodidact-vault:key-check"


class VaultCipherError(ValueError):
    """Base class for vault decryption failures."""


class MalformedPayload(VaultCipherError):
    """Raised when a payload cannot be split into nonce and ciphertext."""


class AuthenticationFailure(VaultCipherError):
    """Raised when the AES-GCM tag does not verify for the given key."""


def derive_key(secret: str) -> bytes:
    """Return the 256-bit AES key for ``secret`` (SHA-256 of its UTF-8 bytes)."""

    return hashlib.sha256(secret.encode("utf-8")).digest()


def key_fingerprint(secret: str) -> str:
    """Short non-reversible identifier of the key derived from ``secret``."""

    digest = hmac.new(derive_key(secret), _FINGERPRINT_LABEL, hashlib.sha256).hexdigest()
    return digest[:16]


def encrypt(plaintext: str, secret: str) -> str:
    """Seal ``plaintext`` and return ``base64(nonce).base64(ciphertext)``."""

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return f"{_b64encode(nonce)}.{_b64encode(ciphertext)}"


def split_payload(payload: str) -> tuple[bytes, bytes]:
    """Decode a stored payload into ``(nonce, ciphertext)``."""

    if not isinstance(payload, str):
        raise MalformedPayload("Payload must be a string")
    nonce_part, sep, cipher_part = payload.partition(".")
    if not sep or not nonce_part or not cipher_part:
        raise MalformedPayload("Invalid payload format")
    try:
        nonce = base64.b64decode(nonce_part, validate=True)
        ciphertext = base64.b64decode(cipher_part, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPayload("Payload is not valid base64") from exc
    if len(nonce) != NONCE_SIZE:
        raise MalformedPayload(f"Nonce must be {NONCE_SIZE} bytes")
    return nonce, ciphertext


def join_payload(nonce: bytes, ciphertext: bytes) -> str:
    return f"{_b64encode(nonce)}.{_b64encode(ciphertext)}"


def decrypt(payload: str, secret: str) -> str:
    """Open a payload produced by :func:`encrypt`."""

    nonce, ciphertext = split_payload(payload)
    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise AuthenticationFailure("Authentication tag did not verify") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:  # pragma: no cover - tag verified, so only on foreign writers
        raise MalformedPayload("Plaintext is not valid UTF-8") from exc


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


__all__ = [
    "AuthenticationFailure",
    "MalformedPayload",
    "NONCE_SIZE",
    "VaultCipherError",
    "decrypt",
    "derive_key",
    "encrypt",
    "join_payload",
    "key_fingerprint",
    "split_payload",
]
