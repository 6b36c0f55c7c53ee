"""Encryption of stored provider API keys.

Keys are stored as Fernet tokens and only decrypted at the moment a request is
dispatched. Plaintext is never logged.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "CV_TAILOR_ENCRYPTION_KEY"


def _derive_key(secret: str) -> bytes:
    """Derive a Fernet key from an arbitrary secret string via SHA-256."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())


def generate_secret() -> str:
    return Fernet.generate_key().decode()


class CredentialCipher:
    """Encrypts and decrypts API keys with a process-wide secret."""

    def __init__(self, secret: str | None = None):
        secret = secret or os.environ.get(ENCRYPTION_KEY_ENV)
        if not secret:
            raise ValueError(
                f"Encryption secret required. Set {ENCRYPTION_KEY_ENV} env var or pass secret."
            )
        self._fernet = Fernet(_derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str | None:
        """Return the plaintext, or None when the token cannot be decrypted."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError):
            logger.error("Failed to decrypt stored credential")
            return None
