"""Fernet encryption of per-tenant provider API keys.

New values are always encrypted with ``FERNET_KEY``. Keys listed in
``FERNET_PREVIOUS_KEYS`` (comma-separated) can still decrypt, so the primary
key can be rotated without rewriting every tenant row first;
``reencrypt_value`` moves one stored value onto the primary key.

Plain-text keys never go to logs. ``key_fingerprint`` gives a stable short
hash to tell two keys apart.
"""

import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from app.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _cipher(primary: str, previous: str) -> MultiFernet:
    keys = [primary] + [k.strip() for k in previous.split(",") if k.strip()]
    return MultiFernet([Fernet(k.encode()) for k in keys])


def _get_fernet() -> MultiFernet:
    if not settings.fernet_key:
        raise ValueError("FERNET_KEY is not configured, cannot encrypt/decrypt provider keys")
    return _cipher(settings.fernet_key, settings.fernet_previous_keys)


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a provider key for storage in a BYTEA column."""
    return _get_fernet().encrypt(plaintext.encode("utf-8"))


def decrypt_value(ciphertext: bytes | None) -> str:
    """Decrypt a stored provider key. Returns empty string when absent or unreadable."""
    if not ciphertext:
        return ""
    try:
        return _get_fernet().decrypt(ciphertext).decode("utf-8")
    except InvalidToken:
        logger.error("Failed to decrypt provider key: not encrypted with FERNET_KEY or any previous key")
        return ""


def reencrypt_value(ciphertext: bytes) -> bytes:
    """Re-encrypt a stored value under the primary key. Raises InvalidToken if no key can read it."""
    return _get_fernet().rotate(ciphertext)


def key_fingerprint(api_key: str) -> str:
    """First 8 hex chars of the key's SHA-256, for logs."""
    if not api_key:
        return "none"
    return hashlib.sha256(api_key.encode()).hexdigest()[:8] + "..."
