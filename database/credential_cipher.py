"""
Encryption of secrets at rest (owner keys, trading credentials).
"""

import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv

load_dotenv()


class CredentialCipher:
    """Handles encryption/decryption of secrets using Fernet."""

    def __init__(self, key: Optional[str] = None):
        self.key = key or os.getenv('CREDENTIAL_ENCRYPTION_KEY')

        if not self.key:
            raise ValueError(
                "CREDENTIAL_ENCRYPTION_KEY not found in environment. "
                "Generate one with: python -c \"from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())\""
            )

        try:
            self.cipher = Fernet(self.key.encode() if isinstance(self.key, str) else self.key)
        except Exception as e:
            raise ValueError(f"Invalid CREDENTIAL_ENCRYPTION_KEY format: {e}")

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, value: str) -> str:
        """Encrypt a string value."""
        if not value:
            raise ValueError("Cannot encrypt an empty value")
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt(self, encrypted_value: str) -> str:
        """Decrypt an encrypted value."""
        if not encrypted_value:
            raise ValueError("Cannot decrypt an empty value")
        try:
            return self.cipher.decrypt(encrypted_value.encode()).decode()
        except InvalidToken as e:
            raise ValueError(f"Failed to decrypt credential: {e!r}")
