import base64
import binascii
import hashlib
from functools import lru_cache
import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from billsync.shared.core.config import get_settings
from billsync.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

KDF_ITERATIONS = 100000
KDF_SALT_LENGTH = 32


@lru_cache(maxsize=8)
def _fernet_for(master_key: str, salt: str) -> Fernet:
    """Derive a Fernet instance from the master key using PBKDF2-SHA256."""
    try:
        salt_bytes = base64.b64decode(salt, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"Invalid KDF salt format: {str(e)}") from e

    if len(salt_bytes) != KDF_SALT_LENGTH:
        raise ConfigurationError(
            f"Invalid KDF salt length: expected {KDF_SALT_LENGTH} bytes, got {len(salt_bytes)}"
        )

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt_bytes,
        iterations=KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(master_key.encode())))


def clear_fernet_cache() -> None:
    _fernet_for.cache_clear()


def _get_fernet() -> Fernet:
    settings = get_settings()
    if not settings.ENCRYPTION_KEY or not settings.KDF_SALT:
        raise ConfigurationError("ENCRYPTION_KEY and KDF_SALT must be configured")
    return _fernet_for(settings.ENCRYPTION_KEY, settings.KDF_SALT)


def encrypt_string(value: str | None) -> str | None:
    """Symmetrically encrypt a string for storage."""
    if not value:
        return None
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt_string(value: str | None) -> str | None:
    """Decrypt a value produced by encrypt_string; None when unreadable."""
    if not value:
        return None
    try:
        return _get_fernet().decrypt(value.encode()).decode()
    except InvalidToken:
        logger.error(
            "decryption_failed_invalid_token",
            fingerprint=hashlib.sha256(value.encode()).hexdigest()[:12],
        )
        return None
