from datetime import timedelta

import pytest
from sqlalchemy import text

from ficsync.db.enums import AccountStatus
from ficsync.db.models import Account
from ficsync.services import account_service
from ficsync.services.account_service import InvalidStatusTransition
from ficsync.utils.datetime_parsing import now_utc


def test_tokens_are_encrypted_at_rest(db, account):
    raw = db.execute(
        text("SELECT access_token FROM fic_accounts WHERE id = :id"), {"id": account.id}
    ).scalar_one()

    assert raw.startswith("enc:")
    assert "access-token" not in raw
    assert account.access_token == "access-token"


def test_token_validity(account):
    now = now_utc()
    assert account_service.is_token_valid(account, now)

    account.token_expires_at = now + timedelta(seconds=30)
    assert not account_service.is_token_valid(account, now)
    assert account_service.needs_token_refresh(account, now)

    account.token_expires_at = None
    assert account_service.is_token_valid(account, now)

    account.status = AccountStatus.NEEDS_REFRESH.value
    assert not account_service.is_token_valid(account, now)


def test_status_moves_forward_only(db, account):
    account_service.transition_status(db, account, AccountStatus.NEEDS_REFRESH, "expired")
    assert account.status == AccountStatus.NEEDS_REFRESH.value
    assert account.status_note == "expired"

    with pytest.raises(InvalidStatusTransition):
        account_service.transition_status(db, account, AccountStatus.ACTIVE)

    account_service.transition_status(db, account, AccountStatus.REVOKED)
    with pytest.raises(InvalidStatusTransition):
        account_service.transition_status(db, account, AccountStatus.SUSPENDED)


def test_bind_account_creates_then_reconnects(db):
    account = account_service.bind_account(
        db,
        tenant_id="team-9",
        company_id=1550348,
        company_name="Acme",
        access_token="a1",
        refresh_token="r1",
        expires_in=3600,
    )
    assert account.status == AccountStatus.ACTIVE.value
    assert account.connected_at is not None

    account_service.transition_status(db, account, AccountStatus.REVOKED)

    again = account_service.bind_account(
        db,
        tenant_id="team-9",
        company_id=1550348,
        company_name="Acme",
        access_token="a2",
        refresh_token=None,
        expires_in=3600,
    )
    assert again.id == account.id
    assert again.status == AccountStatus.ACTIVE.value
    assert again.access_token == "a2"
    assert again.refresh_token == "r1"
    assert db.query(Account).count() == 1


def test_lookup_by_tenant_and_company(db, make_account):
    first = make_account(company_id=1, tenant_id="t1")
    make_account(company_id=2, tenant_id="t2")

    assert account_service.get_account_for_tenant(db, "t1").id == first.id
    assert account_service.get_account_for_tenant(db, None) is None
    assert account_service.get_account_by_company(db, 2).tenant_id == "t2"
    assert len(account_service.list_accounts(db)) == 2
    assert len(account_service.list_accounts(db, tenant_id="t2")) == 1
