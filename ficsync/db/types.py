"""Column types: Fernet-encrypted text and portable JSON."""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import Text, TypeDecorator

from ficsync.core.encryption import decrypt_value, encrypt_value

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class EncryptedString(TypeDecorator):
    """Text stored as ``enc:<fernet token>``; plaintext only in Python."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_value(str(value))

    def process_result_value(self, value, dialect):
        return decrypt_value(value)
