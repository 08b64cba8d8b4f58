"""
Unit tests for application-layer data encryption helpers.
"""
import base64
import os
from contextlib import contextmanager
from decimal import Decimal

import pytest

from fintrack.errors import EncryptionConfigError
from fintrack.security.data_encryption import (
    decrypt_json,
    decrypt_value,
    encrypt_json,
    encrypt_value,
    is_data_encryption_enabled,
    reset_encryption_config_cache,
)


def _b64_key(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


@contextmanager
def _temporary_encryption_env(current: bytes | None, key_id: str, previous: bytes | None = None):
    tracked_keys = (
        "DATA_ENCRYPTION_KEY_CURRENT",
        "DATA_ENCRYPTION_KEY_PREVIOUS",
        "DATA_ENCRYPTION_KEY_ID",
    )
    original_values = {key: os.environ.get(key) for key in tracked_keys}

    if current is not None:
        os.environ["DATA_ENCRYPTION_KEY_CURRENT"] = _b64_key(current)
    else:
        os.environ.pop("DATA_ENCRYPTION_KEY_CURRENT", None)
    os.environ["DATA_ENCRYPTION_KEY_ID"] = key_id
    if previous is not None:
        os.environ["DATA_ENCRYPTION_KEY_PREVIOUS"] = _b64_key(previous)
    else:
        os.environ.pop("DATA_ENCRYPTION_KEY_PREVIOUS", None)
    reset_encryption_config_cache()

    try:
        yield
    finally:
        for key, value in original_values.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        reset_encryption_config_cache()


def test_roundtrip() -> None:
    with _temporary_encryption_env(b"0" * 32, "k1"):
        plaintext = "acct_12345"
        encrypted = encrypt_value(plaintext)

        assert encrypted is not None
        assert encrypted.startswith("enc:v1:k1:")
        assert decrypt_value(encrypted) == plaintext


def test_json_roundtrip() -> None:
    with _temporary_encryption_env(b"1" * 32, "k2"):
        record = {"id": "acc-1", "balance": 10.5, "tags": ["a", "b"], "owner": None}

        encrypted = encrypt_json(record)

        assert "acc-1" not in encrypted
        assert decrypt_json(encrypted) == record
        assert decrypt_json(None) is None


def test_json_encodes_decimals_as_numbers() -> None:
    with _temporary_encryption_env(b"1" * 32, "k2"):
        assert decrypt_json(encrypt_json({"amount": Decimal("12.50")})) == {"amount": 12.5}


def test_same_plaintext_encrypts_differently() -> None:
    with _temporary_encryption_env(b"2" * 32, "k3"):
        assert encrypt_value("same") != encrypt_value("same")


def test_key_rotation_fallback() -> None:
    old_key = b"2" * 32
    new_key = b"3" * 32

    with _temporary_encryption_env(old_key, "k-old"):
        encrypted_with_old = encrypt_value("legacy-value")

    with _temporary_encryption_env(new_key, "k-new", previous=old_key):
        assert decrypt_value(encrypted_with_old) == "legacy-value"


def test_decrypt_with_unknown_key_fails() -> None:
    with _temporary_encryption_env(b"4" * 32, "k-old"):
        encrypted_with_old = encrypt_value("legacy-value")

    with _temporary_encryption_env(b"5" * 32, "k-new"):
        with pytest.raises(EncryptionConfigError):
            decrypt_value(encrypted_with_old)


def test_missing_key_is_a_configuration_error() -> None:
    with _temporary_encryption_env(None, "k1"):
        assert is_data_encryption_enabled() is False
        with pytest.raises(EncryptionConfigError):
            encrypt_json({"id": 1})


def test_plaintext_rows_pass_through() -> None:
    with _temporary_encryption_env(b"6" * 32, "k1"):
        assert decrypt_value("not-encrypted") == "not-encrypted"
