"""
Encryption utilities for webhook signing secrets stored in the database (Fernet)
"""

import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

ENCRYPTED_PREFIX = "enc:"


class EncryptionService:
    """Service for encrypting and decrypting sensitive data"""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize encryption service

        Args:
            encryption_key: Fernet key (urlsafe base64, 32 bytes). If not provided,
                          the ENCRYPTION_KEY environment variable is used
        """
        self.encryption_key = encryption_key or os.getenv("ENCRYPTION_KEY")
        if not self.encryption_key:
            raise ValueError("ENCRYPTION_KEY environment variable not set")

        self.fernet = Fernet(self.encryption_key.encode())

    def encrypt(self, data: str) -> str:
        """Encrypt plaintext; the result carries an ``enc:`` marker"""
        if not data:
            raise ValueError("Data cannot be empty")
        return ENCRYPTED_PREFIX + self.fernet.encrypt(data.encode()).decode()

    def decrypt(self, stored: str) -> str:
        """
        Decrypt a value produced by ``encrypt``

        Values without the ``enc:`` marker were stored before encryption was
        enabled and are returned unchanged.
        """
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        try:
            return self.fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken as e:
            raise ValueError("Decryption failed: invalid token or wrong key") from e


def generate_encryption_key() -> str:
    """
    Generate a new Fernet encryption key

    Returns:
        Base64 encoded encryption key
    """
    return Fernet.generate_key().decode()


def get_encryption_service() -> Optional[EncryptionService]:
    """Encryption service when ENCRYPTION_KEY is set, otherwise None"""
    if not os.getenv("ENCRYPTION_KEY"):
        return None
    return EncryptionService()
