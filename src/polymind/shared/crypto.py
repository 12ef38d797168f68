"""Encryption of agent API keys at rest.

Uses Fernet symmetric encryption with a key derived from APP_SECRET_KEY.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from polymind.config import get_settings
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

_INSECURE_DEFAULT_KEYS = {
    "change-this-to-a-random-secret-key",
    "change-me-in-production",
    "",
}


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Fernet needs a 32-byte urlsafe-base64 key; derive it with SHA256."""
    secret = get_settings().app_secret_key

    if not secret or secret in _INSECURE_DEFAULT_KEYS:
        raise ValueError(
            "APP_SECRET_KEY must be configured before agent keys can be encrypted. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
        )

    derived_key = hashlib.sha256(secret.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(derived_key))


def encrypt_secret(plaintext: str) -> str:
    """Encrypt an agent API key for storage.

    Args:
        plaintext: The key as entered by the user

    Returns:
        Fernet token as text (safe for a VARCHAR column)
    """
    if not plaintext:
        return ""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a stored agent API key.

    Raises:
        ValueError: If decryption fails (wrong key, corrupted data)
    """
    if not ciphertext:
        return ""

    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        logger.error("secret_decrypt_failed")
        raise ValueError("Could not decrypt stored secret; APP_SECRET_KEY may have changed") from e


def is_encrypted(value: str) -> bool:
    """Fernet tokens start with 'gAAAAA' (version byte + timestamp)."""
    if not value:
        return False
    return value.startswith("gAAAAA")


def reveal_secret(stored: str | None) -> str:
    """Return a usable key from a column that may hold legacy plaintext."""
    if not stored:
        return ""
    if is_encrypted(stored):
        return decrypt_secret(stored)
    return stored
