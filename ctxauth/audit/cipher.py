"""
Payload encryption for audit events.

Both supported algorithms derive a 32-byte key from the configured key
material with PBKDF2-HMAC-SHA256. AES-256-GCM output is
``base64(nonce || ciphertext)`` and binds the event id as associated data,
so a payload cannot be moved onto another event.
"""

import base64
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import ConfigurationError


_KDF_SALT = b'ctxauth-audit-ledger'
_KDF_ITERATIONS = 100000
_NONCE_SIZE = 12


class PayloadCipher:
    """Encrypt and decrypt audit payloads with a key derived from a passphrase."""

    def __init__(self, key_material: str, algorithm: str = "AES-256-GCM"):
        """
        Initialize the cipher.

        Args:
            key_material: Passphrase the encryption key is derived from
            algorithm: ``AES-256-GCM`` or ``FERNET``
        """
        if not key_material:
            raise ConfigurationError("Audit encryption key is empty")

        self.algorithm = algorithm.upper()
        derived = self._derive_key(key_material)

        if self.algorithm == "AES-256-GCM":
            self._aead = AESGCM(derived)
            self._fernet = None
        elif self.algorithm == "FERNET":
            self._aead = None
            self._fernet = Fernet(base64.urlsafe_b64encode(derived))
        else:
            raise ConfigurationError(f"Unsupported audit encryption algorithm: {algorithm}")

    @staticmethod
    def _derive_key(key_material: str) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        return kdf.derive(key_material.encode('utf-8'))

    def encrypt(self, plaintext: str, associated_data: Optional[str] = None) -> str:
        """Encrypt a UTF-8 string, returning URL-safe base64 text."""
        data = plaintext.encode('utf-8')

        if self._fernet is not None:
            return self._fernet.encrypt(data).decode('utf-8')

        nonce = secrets.token_bytes(_NONCE_SIZE)
        aad = associated_data.encode('utf-8') if associated_data else None
        ciphertext = self._aead.encrypt(nonce, data, aad)
        return base64.urlsafe_b64encode(nonce + ciphertext).decode('utf-8')

    def decrypt(self, token: str, associated_data: Optional[str] = None) -> str:
        """
        Decrypt text produced by ``encrypt``.

        Raises:
            ValueError: If the token is malformed, tampered with, or was
                encrypted under a different key or associated data
        """
        try:
            if self._fernet is not None:
                return self._fernet.decrypt(token.encode('utf-8')).decode('utf-8')

            raw = base64.urlsafe_b64decode(token.encode('utf-8'))
            nonce, ciphertext = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
            aad = associated_data.encode('utf-8') if associated_data else None
            return self._aead.decrypt(nonce, ciphertext, aad).decode('utf-8')
        except (InvalidTag, InvalidToken, ValueError) as e:
            raise ValueError(f"Failed to decrypt audit payload: {e}") from e
