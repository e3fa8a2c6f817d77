"""Encryption for OAuth tokens and webhook secrets at rest.

DATA_ENCRYPTION_KEY holds one or more comma-separated Fernet keys. The first
key encrypts; every key is tried on decrypt, so a new key can be prepended
and old rows re-encrypted lazily.
"""

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from ficsync.core.config import settings

ENCRYPTED_PREFIX = "enc:"

_cipher: MultiFernet | None = None


def _configured_keys() -> list[str]:
    return [k.strip() for k in settings.DATA_ENCRYPTION_KEY.split(",") if k.strip()]


def get_cipher() -> MultiFernet:
    global _cipher
    if _cipher is None:
        keys = _configured_keys()
        if not keys:
            raise RuntimeError(
                "DATA_ENCRYPTION_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _cipher = MultiFernet([Fernet(k.encode()) for k in keys])
    return _cipher


def reset_cipher() -> None:
    """Forget the cached cipher so the next call re-reads the keys."""
    global _cipher
    _cipher = None


def encrypt_value(value: str | None) -> str | None:
    if not value or value.startswith(ENCRYPTED_PREFIX):
        return value
    return ENCRYPTED_PREFIX + get_cipher().encrypt(value.encode()).decode()


def decrypt_value(value: str | None) -> str | None:
    if not value:
        return value
    if not value.startswith(ENCRYPTED_PREFIX):
        raise ValueError("Encrypted data is missing prefix")
    try:
        return get_cipher().decrypt(value[len(ENCRYPTED_PREFIX):].encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted data")
