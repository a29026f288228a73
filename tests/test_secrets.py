"""Tests for encrypted configuration values."""

import pytest
from cryptography.fernet import InvalidToken

from review_mailer.integrations.secrets import decrypt_value, encrypt_value, reveal


class TestEncryption:
    def test_round_trip(self):
        token = encrypt_value("mandrill-key-123")
        assert token != "mandrill-key-123"
        assert token.startswith("gAAAAA")
        assert decrypt_value(token) == "mandrill-key-123"

    def test_tampered_token_rejected(self):
        token = encrypt_value("secret")
        with pytest.raises(InvalidToken):
            decrypt_value(token[:-4] + "AAAA")


class TestReveal:
    def test_plain_value_passes_through(self):
        assert reveal("plain-api-key") == "plain-api-key"

    def test_empty_value(self):
        assert reveal("") == ""

    def test_encrypted_value_is_decrypted(self):
        assert reveal(encrypt_value("client-secret")) == "client-secret"
