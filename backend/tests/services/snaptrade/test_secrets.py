# backend/tests/services/snaptrade/test_secrets.py
"""
Tests for SecretBox.

This module tests:
- Encrypt/decrypt with the stored layout (salt | iv | tag | ciphertext)
- Fresh salt and iv per message
- Wrong key, tampering and garbage input
"""

import base64

import pytest

from tradeclarity.services.snaptrade import SecretBox, SecretDecryptionError
from tradeclarity.services.snaptrade.secrets import IV_LENGTH, SALT_LENGTH, TAG_LENGTH


@pytest.fixture(scope="module")
def box() -> SecretBox:
    return SecretBox("a-very-secret-passphrase")


class TestSecretBox:
    """Tests for SecretBox encryption."""

    def test_decrypts_what_it_encrypts(self, box):
        token = box.encrypt("user-secret-123")

        assert box.decrypt(token) == "user-secret-123"

    def test_layout_length(self, box):
        raw = base64.b64decode(box.encrypt("abc"))

        assert len(raw) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + 3

    def test_same_plaintext_encrypts_differently(self, box):
        assert box.encrypt("same") != box.encrypt("same")

    def test_wrong_passphrase(self, box):
        token = box.encrypt("user-secret")

        with pytest.raises(SecretDecryptionError):
            SecretBox("another-passphrase").decrypt(token)

    def test_tampered_ciphertext(self, box):
        raw = bytearray(base64.b64decode(box.encrypt("user-secret")))
        raw[-1] ^= 0x01

        with pytest.raises(SecretDecryptionError):
            box.decrypt(base64.b64encode(bytes(raw)).decode("ascii"))

    def test_too_short(self, box):
        with pytest.raises(SecretDecryptionError):
            box.decrypt(base64.b64encode(b"short").decode("ascii"))

    def test_not_base64(self, box):
        with pytest.raises(SecretDecryptionError):
            box.decrypt("***not base64***")

    def test_empty_passphrase(self):
        with pytest.raises(ValueError):
            SecretBox("")
