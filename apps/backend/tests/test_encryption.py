import pytest
from cryptography.fernet import Fernet

from ledgersync.core import encryption
from ledgersync.core.encryption import (
    clear_fernet_cache,
    decrypt_payload,
    encrypt_payload,
    sanitize_metadata,
)
from ledgersync.errors import DecryptionError, KeyNotConfiguredError


def test_round_trip_and_token_is_opaque():
    token = encrypt_payload({"username": "jane", "password": "s3cret"}, "credentials")
    assert "s3cret" not in token
    assert decrypt_payload(token, "credentials") == {"username": "jane", "password": "s3cret"}


def test_empty_token_is_empty_mapping():
    assert decrypt_payload(None) == {}
    assert decrypt_payload("") == {}


def test_foreign_token_rejected():
    foreign = Fernet(Fernet.generate_key()).encrypt(b'{"a": 1}').decode()
    with pytest.raises(DecryptionError):
        decrypt_payload(foreign)


def test_sanitize_metadata():
    assert sanitize_metadata({"security_number": "1", "pin": "2", "enable_loan_redraw": True}) == {
        "enable_loan_redraw": True
    }


def test_missing_key(monkeypatch):
    monkeypatch.setattr(encryption.settings, "ENCRYPTION_KEY", None)
    clear_fernet_cache()
    try:
        assert encryption.is_encryption_configured() is False
        with pytest.raises(KeyNotConfiguredError):
            encrypt_payload({"a": 1})
    finally:
        monkeypatch.undo()
        clear_fernet_cache()
