"""Cryptographic utilities for wallet secrets.

Uses Fernet (AES-128-CBC with HMAC) for symmetric encryption, both for
secrets at rest and for the caller-held resumption token.
"""

import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

__all__ = [
    "InvalidToken",
    "SecretEncryptor",
    "derive_key_from_password",
    "fernet_from_secret",
    "generate_master_key",
    "get_encryptor",
]


def generate_master_key() -> str:
    """Generate a new master encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for Fernet
    """
    return Fernet.generate_key().decode()


def derive_key_from_password(password: str, salt: Optional[bytes] = None) -> tuple[str, bytes]:
    """Derive a Fernet key from a password using PBKDF2.

    Args:
        password: Passphrase
        salt: Optional salt (generated if not provided)

    Returns:
        Tuple of (base64-encoded key, salt)
    """
    if salt is None:
        salt = os.urandom(16)

    # PBKDF2 with SHA256, 100k iterations
    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode(),
        salt,
        100000,
        dklen=32,
    )

    # Fernet requires base64-encoded key
    fernet_key = base64.urlsafe_b64encode(key)
    return fernet_key.decode(), salt


def fernet_from_secret(secret: str, salt: bytes) -> Fernet:
    """Build a Fernet from a ready key, or derive one from a passphrase."""
    try:
        return Fernet(secret.encode())
    except ValueError:
        key, _ = derive_key_from_password(secret, salt)
        return Fernet(key.encode())


class SecretEncryptor:
    """Encrypts and decrypts wallet secret keys at rest.

    Usage:
        encryptor = SecretEncryptor(master_key)
        encrypted = encryptor.encrypt(secret_b58)
        decrypted = encryptor.decrypt(encrypted)
    """

    def __init__(self, master_key: str):
        """Initialize with master encryption key.

        Args:
            master_key: Base64-encoded Fernet key (32 bytes)
        """
        self._fernet = Fernet(master_key.encode())

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a stored secret.

        Raises:
            InvalidToken: If decryption fails (wrong key or corrupted data)
        """
        return self._fernet.decrypt(encrypted.encode()).decode()


def get_encryptor(master_key: Optional[str] = None) -> Optional[SecretEncryptor]:
    """Get encryptor instance using MASTER_KEY from settings.

    Returns:
        SecretEncryptor if MASTER_KEY is set, None otherwise
    """
    if master_key is None:
        from solrelay.config import get_settings

        master_key = get_settings().master_key

    if not master_key:
        return None

    return SecretEncryptor(master_key)
