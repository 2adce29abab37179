"""
Secret encryption for stored database credentials.

Credentials are kept in the catalog as Fernet tokens and only decrypted when a
connection context is built or a linked app is rewritten.
"""

import os
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from .errors import SecretError


class SecretBox:
    """Encrypt/decrypt helper around a Fernet key."""

    def __init__(self, key: Union[str, bytes]):
        if isinstance(key, str):
            key = key.encode("utf-8")
        try:
            self._cipher = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise SecretError("Invalid secret key. Use a Fernet-compatible base64 key.") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret. Empty strings are stored as-is."""
        if not plaintext:
            return ""
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored secret.

        Raises:
            SecretError: If the token is invalid or was issued with another key.
        """
        if not ciphertext:
            return ""
        try:
            return self._cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise SecretError("Failed to decrypt stored secret") from exc


def get_secret_box(key: Optional[str] = None) -> SecretBox:
    """
    Build a SecretBox from an explicit key or the FLUX_SECRET_KEY environment variable.

    Raises:
        SecretError: If no key is configured.
    """
    key = key or os.environ.get("FLUX_SECRET_KEY")
    if not key:
        raise SecretError("FLUX_SECRET_KEY must be set to store encrypted database credentials.")
    return SecretBox(key)
