"""
Token Vault Module
Encrypts OAuth credentials at rest with AES-256-GCM.

Bundles are stored as JSON text ``{"iv", "authTag", "cipherText"}`` with
every field base64-encoded; the nonce is 96 bits and random per call and the
authentication tag is 128 bits.
"""

import base64
import binascii
import json
import os
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from jira_sync.config_manager import ConfigManager
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


class TokenVaultError(Exception):
    """Raised when a token cannot be encrypted or decrypted."""


class TokenVault:
    """AES-256-GCM encrypt/decrypt for token strings."""

    def __init__(self, key: Optional[str] = None):
        """
        Args:
            key: Base64-encoded 32-byte key. Defaults to ``security.encryption_key``
                from configuration. A missing key is only reported when used.
        """
        if key is None:
            key = ConfigManager().get_security_config().get('encryption_key')
        self._raw_key = key

    def _get_key(self) -> bytes:
        if not self._raw_key:
            raise TokenVaultError("ENCRYPTION_KEY is required for encryption")
        try:
            key = base64.b64decode(self._raw_key, validate=True)
        except (binascii.Error, ValueError):
            raise TokenVaultError("ENCRYPTION_KEY must be base64-encoded")
        if len(key) != KEY_SIZE:
            raise TokenVaultError(f"ENCRYPTION_KEY must decode to {KEY_SIZE} bytes, got {len(key)}")
        return key

    def encrypt(self, plaintext: str) -> Dict[str, str]:
        """Encrypt a string into an ``{iv, authTag, cipherText}`` bundle."""
        aesgcm = AESGCM(self._get_key())
        iv = os.urandom(NONCE_SIZE)
        sealed = aesgcm.encrypt(iv, plaintext.encode('utf-8'), None)
        cipher_text, auth_tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return {
            'iv': base64.b64encode(iv).decode('ascii'),
            'authTag': base64.b64encode(auth_tag).decode('ascii'),
            'cipherText': base64.b64encode(cipher_text).decode('ascii'),
        }

    def decrypt(self, bundle: Dict[str, str]) -> str:
        """Decrypt a bundle produced by :meth:`encrypt`."""
        key = self._get_key()
        try:
            iv = base64.b64decode(bundle['iv'])
            auth_tag = base64.b64decode(bundle['authTag'])
            cipher_text = base64.b64decode(bundle['cipherText'])
        except (KeyError, TypeError, binascii.Error, ValueError) as e:
            raise TokenVaultError(f"Malformed token bundle: {e}")

        try:
            plaintext = AESGCM(key).decrypt(iv, cipher_text + auth_tag, None)
        except (InvalidTag, ValueError):
            raise TokenVaultError("Token authentication failed; wrong key or tampered data")

        return plaintext.decode('utf-8')

    # Bundles are persisted as JSON text columns

    def encrypt_to_json(self, plaintext: str) -> str:
        return json.dumps(self.encrypt(plaintext))

    def decrypt_from_json(self, payload: str) -> str:
        try:
            bundle = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise TokenVaultError(f"Malformed token bundle: {e}")
        return self.decrypt(bundle)


def generate_key() -> str:
    """Generate a new base64 encryption key suitable for ENCRYPTION_KEY."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode('ascii')
