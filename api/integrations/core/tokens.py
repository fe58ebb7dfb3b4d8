"""
Credential encryption.

Handles secure storage and retrieval of integration credentials using Fernet
symmetric encryption. Credentials are JSON-serialized and encrypted at the
application layer before they are written to integrations.credentials.
"""

import json
import os
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from services.errors import DecryptionError

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Encrypts/decrypts integration credentials.

    Uses Fernet symmetric encryption with a key from environment variables.
    The same key must be used for encryption and decryption. The key is read
    once at construction; there is no rotation.

    Environment:
        INTEGRATION_ENCRYPTION_KEY: Base64-encoded 32-byte Fernet key
    """

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize CredentialStore.

        Args:
            encryption_key: Fernet key (base64). If not provided, reads from
                           INTEGRATION_ENCRYPTION_KEY environment variable.
        """
        key = encryption_key or os.getenv("INTEGRATION_ENCRYPTION_KEY")

        if not key:
            raise ValueError(
                "INTEGRATION_ENCRYPTION_KEY environment variable is required. "
                "Generate one with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )

        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, payload: Any) -> str:
        """
        Encrypt a JSON-serializable payload for storage.

        Returns:
            Base64-encoded token safe to store in a text column
        """
        plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> Any:
        """
        Decrypt a stored credential blob.

        Raises:
            DecryptionError: If the input is not well-formed, was produced with
                a different key, or does not hold JSON
        """
        if not isinstance(token, str) or not token:
            raise DecryptionError("Credential blob is empty or not a string")

        try:
            plaintext = self._fernet.decrypt(token.encode())
        except (InvalidToken, ValueError, TypeError) as e:
            logger.warning(f"[CREDENTIALS] Decryption failed: {type(e).__name__}")
            raise DecryptionError("Credentials could not be decrypted") from e

        try:
            return json.loads(plaintext.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError("Decrypted credentials are not valid JSON") from e

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new Fernet encryption key.

        Use this to generate a key for INTEGRATION_ENCRYPTION_KEY.
        """
        return Fernet.generate_key().decode()
