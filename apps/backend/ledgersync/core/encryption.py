"""
Encryption utilities for bank connection secrets.

Credentials and adapter metadata are stored as Fernet tokens
(AES-128-CBC with HMAC). The key comes from ``LEDGERSYNC_ENCRYPTION_KEY``.

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

Never log decrypted values.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from ledgersync.core.config import settings
from ledgersync.errors import DecryptionError, EncryptionError, KeyNotConfiguredError

logger = logging.getLogger(__name__)

# Keys removed before metadata leaves the service
SENSITIVE_METADATA_KEYS = ("security_number", "password", "pin")


@lru_cache(maxsize=1)
def _get_fernet() -> Optional[Fernet]:
    """
    Get Fernet instance with configured key.
    Cached; call clear_fernet_cache() after changing the key.
    """
    key = settings.ENCRYPTION_KEY
    if not key:
        logger.warning("LEDGERSYNC_ENCRYPTION_KEY not configured - encryption disabled")
        return None
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid encryption key format: {e}")
        return None


def clear_fernet_cache() -> None:
    _get_fernet.cache_clear()


def is_encryption_configured() -> bool:
    """Check if encryption is properly configured."""
    return _get_fernet() is not None


def encrypt_payload(payload: dict[str, Any], field_name: str = "payload") -> str:
    """
    Encrypt a JSON-serializable mapping for storage.

    Args:
        payload: Mapping to encrypt
        field_name: Name of field (for logging)

    Returns:
        Fernet token as text

    Raises:
        KeyNotConfiguredError: If no key is configured
        EncryptionError: If serialization or encryption fails
    """
    fernet = _get_fernet()
    if not fernet:
        raise KeyNotConfiguredError(f"Encryption key not configured - cannot encrypt {field_name}")
    try:
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Failed to serialize {field_name}: {e}")
    return fernet.encrypt(raw.encode("utf-8")).decode("utf-8")


def decrypt_payload(token: Optional[str], field_name: str = "payload") -> dict[str, Any]:
    """
    Decrypt a stored Fernet token back into a mapping.

    An empty token decrypts to an empty mapping.

    Raises:
        KeyNotConfiguredError: If no key is configured
        DecryptionError: If the token is invalid or not JSON
    """
    if not token:
        return {}
    fernet = _get_fernet()
    if not fernet:
        raise KeyNotConfiguredError(f"Encryption key not configured - cannot decrypt {field_name}")
    try:
        raw = fernet.decrypt(token.encode("utf-8"))
    except InvalidToken:
        logger.error(f"Decryption failed for {field_name} - invalid token")
        raise DecryptionError(f"Invalid encryption token for {field_name}")
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise DecryptionError(f"Decrypted {field_name} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise DecryptionError(f"Decrypted {field_name} is not an object")
    return data


def sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Drop secret keys so metadata can be returned to clients."""
    return {k: v for k, v in (metadata or {}).items() if k not in SENSITIVE_METADATA_KEYS}


def generate_encryption_key() -> str:
    return Fernet.generate_key().decode("utf-8")
