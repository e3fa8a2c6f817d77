"""Account service - FIC credential store and account lifecycle."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficsync.db.enums import ACCOUNT_STATUS_TRANSITIONS, AccountStatus
from ficsync.db.models import Account
from ficsync.utils.datetime_parsing import as_utc, now_utc

logger = logging.getLogger(__name__)

# Tokens this close to expiry are treated as expired
TOKEN_EXPIRY_SKEW = timedelta(seconds=60)


class InvalidStatusTransition(ValueError):
    """Requested status change is not a forward transition."""


def get_account(db: Session, account_id: int) -> Account | None:
    return db.get(Account, account_id)


def get_account_by_company(db: Session, company_id: int) -> Account | None:
    return db.scalar(select(Account).where(Account.company_id == company_id))


def get_account_for_tenant(db: Session, tenant_id: str | None) -> Account | None:
    """The account bound to a tenant, if any."""
    if not tenant_id:
        return None
    return db.scalar(
        select(Account).where(Account.tenant_id == tenant_id).order_by(Account.id).limit(1)
    )


def list_accounts(
    db: Session,
    tenant_id: str | None = None,
    status: AccountStatus | None = None,
) -> list[Account]:
    stmt = select(Account)
    if tenant_id:
        stmt = stmt.where(Account.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(Account.status == status.value)
    return list(db.scalars(stmt.order_by(Account.id)))


# =============================================================================
# Token validity
# =============================================================================


def is_token_valid(account: Account, now: datetime | None = None) -> bool:
    """True when the account has an access token that is not about to expire."""
    if not account.access_token:
        return False
    if account.status != AccountStatus.ACTIVE.value:
        return False
    expires_at = as_utc(account.token_expires_at)
    if expires_at is None:
        return True
    return expires_at - TOKEN_EXPIRY_SKEW > (now or now_utc())


def needs_token_refresh(account: Account, now: datetime | None = None) -> bool:
    return bool(account.refresh_token) and not is_token_valid(account, now)


def store_tokens(
    db: Session,
    account: Account,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
) -> Account:
    """
    Persist a fresh token pair (encrypted by the column type).

    A successful refresh repairs a needs_refresh account back to active.
    """
    now = now_utc()
    account.access_token = access_token
    if refresh_token:
        account.refresh_token = refresh_token
    account.token_expires_at = now + timedelta(seconds=expires_in) if expires_in else None
    account.token_refreshed_at = now
    if account.status == AccountStatus.NEEDS_REFRESH.value:
        account.status = AccountStatus.ACTIVE.value
        account.status_note = None
        logger.info("FIC account %s token repaired, status back to active", account.id)
    db.commit()
    db.refresh(account)
    return account


# =============================================================================
# Status lifecycle
# =============================================================================


def transition_status(
    db: Session, account: Account, new_status: AccountStatus, note: str | None = None
) -> Account:
    """
    Move an account forward in its lifecycle.

    Returning to ACTIVE only happens through ``bind_account`` (OAuth
    reconnect) or ``store_tokens`` after a refresh; a same-status call just
    updates the note.
    """
    current = AccountStatus(account.status)
    if new_status != current and new_status not in ACCOUNT_STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransition(
            f"Cannot change account {account.id} from {current.value} to {new_status.value}"
        )
    account.status = new_status.value
    account.status_note = note
    db.commit()
    db.refresh(account)
    logger.info(
        "FIC account %s status %s -> %s", account.id, current.value, new_status.value
    )
    return account


def bind_account(
    db: Session,
    *,
    tenant_id: str | None,
    company_id: int,
    company_name: str | None,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
) -> Account:
    """
    Create or reconnect the account for a company after OAuth.

    Reconnect is the one path that may bring any status back to ACTIVE.
    """
    now = now_utc()
    account = get_account_by_company(db, company_id)
    if account is None:
        account = Account(company_id=company_id)
        db.add(account)

    if tenant_id:
        account.tenant_id = tenant_id
    account.company_name = company_name
    account.name = account.name or company_name
    account.access_token = access_token
    if refresh_token:
        account.refresh_token = refresh_token
    account.token_expires_at = now + timedelta(seconds=expires_in) if expires_in else None
    account.token_refreshed_at = now
    account.status = AccountStatus.ACTIVE.value
    account.status_note = None
    account.connected_at = now
    db.commit()
    db.refresh(account)
    return account


def mark_webhook_verified(db: Session, account: Account) -> None:
    account.webhook_verified_at = now_utc()
    db.commit()


def touch_last_sync(db: Session, account: Account) -> None:
    account.last_sync_at = now_utc()
    db.commit()


def delete_account(db: Session, account: Account) -> None:
    """Delete an account; subscriptions, events and resources cascade."""
    db.delete(account)
    db.commit()
