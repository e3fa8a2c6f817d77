"""Field encryption and key rotation."""
import pytest
from click.testing import CliRunner
from cryptography.fernet import Fernet
from sqlalchemy import text

from ficsync import cli as cli_module
from ficsync.core import encryption
from ficsync.core.config import settings


@pytest.fixture
def fresh_cipher():
    encryption.reset_cipher()
    yield
    encryption.reset_cipher()


def test_round_trip_and_prefix(fresh_cipher):
    stored = encryption.encrypt_value("whsec-123")

    assert stored.startswith(encryption.ENCRYPTED_PREFIX)
    assert encryption.encrypt_value(stored) == stored
    assert encryption.decrypt_value(stored) == "whsec-123"
    assert encryption.encrypt_value(None) is None
    assert encryption.decrypt_value("") == ""


def test_rejects_unprefixed_or_corrupted(fresh_cipher):
    with pytest.raises(ValueError):
        encryption.decrypt_value("plaintext")
    with pytest.raises(ValueError):
        encryption.decrypt_value("enc:not-a-token")


def test_old_key_still_decrypts_after_rotation(fresh_cipher, monkeypatch):
    old_key = settings.DATA_ENCRYPTION_KEY
    stored = encryption.encrypt_value("refresh-token")

    new_key = Fernet.generate_key().decode()
    monkeypatch.setattr(settings, "DATA_ENCRYPTION_KEY", f"{new_key},{old_key}")
    encryption.reset_cipher()

    assert encryption.decrypt_value(stored) == "refresh-token"
    rotated = encryption.encrypt_value("refresh-token")
    assert Fernet(new_key.encode()).decrypt(rotated[4:].encode()) == b"refresh-token"


def test_missing_key(fresh_cipher, monkeypatch):
    monkeypatch.setattr(settings, "DATA_ENCRYPTION_KEY", " ")

    with pytest.raises(RuntimeError):
        encryption.encrypt_value("x")


def test_reencrypt_cli_moves_rows_to_new_key(fresh_cipher, monkeypatch, db, account, session_factory):
    old_key = settings.DATA_ENCRYPTION_KEY
    new_key = Fernet.generate_key().decode()
    monkeypatch.setattr(settings, "DATA_ENCRYPTION_KEY", f"{new_key},{old_key}")
    encryption.reset_cipher()
    monkeypatch.setattr(cli_module, "SessionLocal", session_factory)

    result = CliRunner().invoke(cli_module.cli, ["reencrypt-secrets"])

    assert result.exit_code == 0, result.output
    assert "Re-encrypted 1 accounts" in result.output
    raw = db.execute(
        text("SELECT access_token FROM fic_accounts WHERE id = :id"), {"id": account.id}
    ).scalar_one()
    assert Fernet(new_key.encode()).decrypt(raw[4:].encode()) == b"access-token"
