# backend/tradeclarity/services/snaptrade/secrets.py
"""
Encryption of aggregator user secrets at rest.

Ciphertext layout (base64 of the concatenation):

    salt (64) | iv (16) | tag (16) | ciphertext

The AES-256-GCM key is derived per message from ENCRYPTION_KEY with
PBKDF2-HMAC-SHA512 (100k iterations) over the random salt.
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


class SecretDecryptionError(ValueError):
    """Stored secret is corrupt or was encrypted with another key."""


class SecretBox:
    """Encrypts and decrypts short secrets with a passphrase."""

    def __init__(self, passphrase: str) -> None:
        if not passphrase:
            raise ValueError("Encryption passphrase must not be empty")
        self._passphrase = passphrase.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; the stored layout keeps it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            data = base64.b64decode(token)
        except (ValueError, TypeError) as e:
            raise SecretDecryptionError(f"Secret is not valid base64: {e}")

        header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(data) < header:
            raise SecretDecryptionError("Secret is too short")

        salt = data[:SALT_LENGTH]
        iv = data[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = data[SALT_LENGTH + IV_LENGTH:header]
        ciphertext = data[header:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise SecretDecryptionError("Secret failed authentication")
        return plaintext.decode("utf-8")
