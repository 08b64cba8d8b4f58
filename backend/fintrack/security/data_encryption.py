"""
Application-layer field encryption helpers.

Raw aggregator payloads are stored as AES-256-GCM envelopes:
    enc:v1:<keyId>:<base64url(nonce + ciphertext)>
"""
from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from fintrack.errors import EncryptionConfigError


_ENVELOPE_PREFIX = "enc:v1"


@dataclass(frozen=True)
class _EncryptionConfig:
    current_key: Optional[bytes]
    previous_key: Optional[bytes]
    key_id: str

    @property
    def enabled(self) -> bool:
        return self.current_key is not None


def _parse_key(raw: str) -> bytes:
    candidate = raw.strip()
    if not candidate:
        raise ValueError("Encryption key cannot be empty.")

    # Support hex keys for operational convenience.
    if all(ch in "0123456789abcdefABCDEF" for ch in candidate) and len(candidate) % 2 == 0:
        decoded = bytes.fromhex(candidate)
        if len(decoded) == 32:
            return decoded

    padded = candidate + ("=" * ((4 - len(candidate) % 4) % 4))
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("utf-8"))
    except ValueError as exc:
        raise ValueError("Invalid base64 data encryption key.") from exc
    if len(decoded) == 32:
        return decoded

    raise ValueError("Data encryption key must decode to exactly 32 bytes.")


@lru_cache(maxsize=1)
def _load_config() -> _EncryptionConfig:
    current_raw = os.getenv("DATA_ENCRYPTION_KEY_CURRENT", "").strip()
    previous_raw = os.getenv("DATA_ENCRYPTION_KEY_PREVIOUS", "").strip()
    key_id = os.getenv("DATA_ENCRYPTION_KEY_ID", "k1").strip() or "k1"

    try:
        current_key = _parse_key(current_raw) if current_raw else None
        previous_key = _parse_key(previous_raw) if previous_raw else None
    except ValueError as exc:
        raise EncryptionConfigError(str(exc)) from exc

    return _EncryptionConfig(
        current_key=current_key,
        previous_key=previous_key,
        key_id=key_id,
    )


def _require_config() -> _EncryptionConfig:
    config = _load_config()
    if not config.enabled:
        raise EncryptionConfigError(
            "DATA_ENCRYPTION_KEY_CURRENT is not configured. "
            "Set a 32-byte key (hex or base64) to store aggregator data."
        )
    return config


def is_data_encryption_enabled() -> bool:
    return _load_config().enabled


def _urlsafe_b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _urlsafe_b64decode(raw: str) -> bytes:
    padded = raw + ("=" * ((4 - len(raw) % 4) % 4))
    return base64.urlsafe_b64decode(padded.encode("utf-8"))


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None

    config = _require_config()
    nonce = os.urandom(12)
    ciphertext = AESGCM(config.current_key).encrypt(
        nonce=nonce,
        data=plaintext.encode("utf-8"),
        associated_data=None,
    )
    payload = _urlsafe_b64encode(nonce + ciphertext)
    return f"{_ENVELOPE_PREFIX}:{config.key_id}:{payload}"


def decrypt_value(ciphertext: Optional[str]) -> Optional[str]:
    if ciphertext is None:
        return None

    if not ciphertext.startswith(f"{_ENVELOPE_PREFIX}:"):
        # Backward compatibility with plaintext rows.
        return ciphertext

    parts = ciphertext.split(":", 3)
    if len(parts) != 4:
        raise ValueError("Invalid encrypted value format.")

    _enc, _version, embedded_key_id, payload = parts
    blob = _urlsafe_b64decode(payload)
    if len(blob) < 13:
        raise ValueError("Encrypted payload is too short.")

    nonce = blob[:12]
    encrypted = blob[12:]

    config = _require_config()

    candidate_keys = []
    if embedded_key_id == config.key_id:
        candidate_keys.append(config.current_key)
        if config.previous_key:
            candidate_keys.append(config.previous_key)
    else:
        if config.previous_key:
            candidate_keys.append(config.previous_key)
        candidate_keys.append(config.current_key)

    last_error = None
    for key in candidate_keys:
        try:
            plaintext = AESGCM(key).decrypt(
                nonce=nonce,
                data=encrypted,
                associated_data=None,
            )
            return plaintext.decode("utf-8")
        except InvalidTag as exc:
            last_error = exc

    raise EncryptionConfigError("Failed to decrypt encrypted value with configured keys.") from last_error


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encrypt_json(obj: Any) -> str:
    """Serialize ``obj`` to JSON and encrypt it with the current key."""
    return encrypt_value(json.dumps(obj, default=_json_default))


def decrypt_json(ciphertext: Optional[str]) -> Any:
    """Decrypt an envelope produced by ``encrypt_json``; ``None`` stays ``None``."""
    plaintext = decrypt_value(ciphertext)
    if plaintext is None:
        return None
    return json.loads(plaintext)


def reset_encryption_config_cache() -> None:
    _load_config.cache_clear()
