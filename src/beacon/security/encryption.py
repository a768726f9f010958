"""Encryption of integration secrets at rest.

Webhook signing secrets (and other tenant-supplied credentials) are stored
encrypted with AES-256-GCM. A fresh key is derived for every message with
HKDF-SHA256 from the master key and a random salt.

Format (base64 encoded):
    [version(1)][salt(16)][iv(12)][ciphertext + tag(16)]

Example:
    cipher = SecretCipher(settings.encryption_key)
    token = cipher.encrypt("whsec_abc")
    assert cipher.decrypt(token) == "whsec_abc"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from beacon.config import settings

logger = logging.getLogger(__name__)

VERSION = 0x01
SALT_LENGTH = 16
IV_LENGTH = 12
TAG_LENGTH = 16
MIN_KEY_LENGTH = 32
HKDF_INFO = b"beacon-integration-encryption"
MIN_PAYLOAD_LENGTH = 1 + SALT_LENGTH + IV_LENGTH + TAG_LENGTH

_WEAK_KEYS = ("your-encryption-key-here", "password", "secret")
_REPEATED_CHAR = re.compile(r"^(.)\1+$", re.DOTALL)


class EncryptionError(Exception):
    """Encryption failed."""

    def __init__(self, message: str, code: str = "ENCRYPTION_FAILED"):
        super().__init__(message)
        self.code = code


class DecryptionError(Exception):
    """Decryption failed: malformed input, unknown version or tampering."""

    def __init__(self, message: str, code: str = "DECRYPTION_FAILED"):
        super().__init__(message)
        self.code = code


class InvalidKeyError(Exception):
    """Master key is missing, too short or a placeholder."""


def validate_key(master_key: str | None) -> bytes:
    """Check the master key and return its bytes.

    Raises:
        InvalidKeyError: Key is missing, shorter than 32 bytes or weak
    """
    if not master_key:
        raise InvalidKeyError(
            "ENCRYPTION_KEY is not set. Generate one with: openssl rand -base64 32"
        )
    key_bytes = master_key.encode("utf-8")
    if len(key_bytes) < MIN_KEY_LENGTH:
        raise InvalidKeyError(
            f"Encryption key must be at least {MIN_KEY_LENGTH} bytes, got {len(key_bytes)}"
        )
    lowered = master_key.lower()
    if any(weak in lowered for weak in _WEAK_KEYS) or _REPEATED_CHAR.match(master_key):
        raise InvalidKeyError("Encryption key looks like a placeholder or weak pattern")
    return key_bytes


class SecretCipher:
    """AES-256-GCM cipher with per-message HKDF key derivation."""

    def __init__(self, master_key: str | None):
        self._master = validate_key(master_key)

    def _derive(self, salt: bytes) -> bytes:
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=HKDF_INFO)
        return hkdf.derive(self._master)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string; two calls with the same input never match."""
        try:
            salt = os.urandom(SALT_LENGTH)
            iv = os.urandom(IV_LENGTH)
            sealed = AESGCM(self._derive(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as e:
            raise EncryptionError(f"Failed to encrypt data: {e}") from e
        return base64.b64encode(bytes([VERSION]) + salt + iv + sealed).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a value produced by ``encrypt``.

        Raises:
            DecryptionError: With code INVALID_FORMAT, UNSUPPORTED_VERSION or AUTH_FAILED
        """
        try:
            combined = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Invalid encrypted data: not base64", "INVALID_FORMAT") from e

        if len(combined) < MIN_PAYLOAD_LENGTH:
            raise DecryptionError(
                f"Invalid encrypted data: too short ({len(combined)} bytes, "
                f"expected at least {MIN_PAYLOAD_LENGTH})",
                "INVALID_FORMAT",
            )

        version = combined[0]
        if version != VERSION:
            raise DecryptionError(
                f"Unsupported encryption version: {version} (expected {VERSION})",
                "UNSUPPORTED_VERSION",
            )

        salt = combined[1 : 1 + SALT_LENGTH]
        iv = combined[1 + SALT_LENGTH : 1 + SALT_LENGTH + IV_LENGTH]
        sealed = combined[1 + SALT_LENGTH + IV_LENGTH :]

        try:
            plaintext = AESGCM(self._derive(salt)).decrypt(iv, sealed, None)
        except InvalidTag as e:
            raise DecryptionError(
                "Authentication failed: data was tampered with or the key is wrong",
                "AUTH_FAILED",
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted data is not valid UTF-8", "INVALID_FORMAT") from e


def is_encrypted(value: str | None) -> bool:
    """Heuristic: does the value look like an output of ``encrypt``?"""
    if not value:
        return False
    try:
        combined = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(combined) >= MIN_PAYLOAD_LENGTH and combined[0] == VERSION


_cipher: SecretCipher | None = None


def get_cipher() -> SecretCipher:
    """Get the process cipher built from ``settings.encryption_key``."""
    global _cipher
    if _cipher is None:
        _cipher = SecretCipher(settings.encryption_key)
        logger.info("Encryption key validated")
    return _cipher
