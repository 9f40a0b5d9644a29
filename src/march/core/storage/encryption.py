"""Fernet-based payload encryption for raw samples at rest.

Raw sample payloads and baselines are encrypted before writing to SQLite.
Assessments (scores, rationale) carry no raw readings and stay in clear
so history queries need no decryption.

Several keys may be configured for rotation: the first encrypts, all of
them are tried on decrypt (``MultiFernet``).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _split_keys(key: str) -> list[str]:
    return [part.strip() for part in key.split(",") if part.strip()]


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable payloads.

    Usage::

        encryptor = FieldEncryptor(key="new-key,old-key")
        token = encryptor.encrypt({"hrv": 52.0})
        encryptor.decrypt(token)  # {"hrv": 52.0}
    """

    def __init__(self, key: str) -> None:
        """Initialize with one or more comma-separated Fernet keys.

        Raises:
            EncryptionError: If no key is given or any key is invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        keys = _split_keys(key)
        try:
            fernets = [Fernet(k.encode("utf-8")) for k in keys]
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc
        self._fernet = MultiFernet(fernets)
        self._key_count = len(fernets)
        if self._key_count > 1:
            logger.info("Field encryption using %d keys (rotation enabled)", self._key_count)

    @property
    def key_count(self) -> int:
        return self._key_count

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value to a Fernet token string.

        Raises:
            EncryptionError: If serialization or encryption fails.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a Fernet token string back to a Python object.

        Raises:
            EncryptionError: If the token is invalid or no key matches.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
