"""Subscription service - webhook subscription registry and renewal."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.core.exceptions import FicApiError
from ficsync.core.structured_logging import build_log_context
from ficsync.db.enums import AccountStatus
from ficsync.db.models import Account, Subscription
from ficsync.services import account_service
from ficsync.services.event_types import EVENT_GROUP_TYPES
from ficsync.services.fic_api import FicApiClient
from ficsync.utils.datetime_parsing import as_utc, now_utc

logger = logging.getLogger(__name__)

EVENT_GROUP_PATTERN = re.compile(r"^[a-z_]+$")

# A verified handshake keeps the subscription alive at least this long
VERIFIED_EXTENSION = timedelta(days=30)

# FIC answers these when the remote subscription no longer exists
GONE_STATUSES = (404, 410)

ClientFactory = Callable[[Account], FicApiClient]


def is_valid_event_group(event_group: str) -> bool:
    return bool(EVENT_GROUP_PATTERN.match(event_group or ""))


def build_sink_url(account_id: int, event_group: str, app_url: str | None = None) -> str:
    """Public webhook URL FIC delivers to."""
    base = (app_url or settings.APP_URL).rstrip("/")
    return f"{base}/webhooks/{account_id}/{event_group}"


def get_subscription(db: Session, subscription_id: int) -> Subscription | None:
    return db.get(Subscription, subscription_id)


def get_active_subscription(db: Session, account_id: int, event_group: str) -> Subscription | None:
    """Active subscription for (account, event group); newest wins if several."""
    return db.scalar(
        select(Subscription)
        .where(
            Subscription.account_id == account_id,
            Subscription.event_group == event_group,
            Subscription.is_active.is_(True),
        )
        .order_by(Subscription.id.desc())
        .limit(1)
    )


def list_subscriptions(
    db: Session, account_id: int | None = None, active_only: bool = False
) -> list[Subscription]:
    stmt = select(Subscription)
    if account_id is not None:
        stmt = stmt.where(Subscription.account_id == account_id)
    if active_only:
        stmt = stmt.where(Subscription.is_active.is_(True))
    return list(db.scalars(stmt.order_by(Subscription.account_id, Subscription.id)))


def save_subscription(
    db: Session,
    account: Account,
    *,
    fic_subscription_id: str,
    event_group: str,
    secret: str | None,
    expires_at: datetime | None,
    event_types: list[str] | None = None,
) -> Subscription:
    """Insert or update the local row for a remote subscription."""
    subscription = db.scalar(
        select(Subscription).where(Subscription.fic_subscription_id == fic_subscription_id)
    )
    if subscription is None:
        subscription = Subscription(
            account_id=account.id,
            fic_subscription_id=fic_subscription_id,
            event_group=event_group,
        )
        db.add(subscription)

    subscription.event_group = event_group
    if secret:
        subscription.webhook_secret = secret
    if expires_at:
        subscription.expires_at = expires_at
    if event_types:
        subscription.event_types = list(event_types)
    subscription.is_active = True
    db.commit()
    db.refresh(subscription)
    return subscription


def mark_verified(db: Session, subscription: Subscription) -> Subscription:
    """Record a successful verification handshake and extend expiry."""
    now = now_utc()
    subscription.verified_at = now
    current = as_utc(subscription.expires_at)
    if current is not None and current < now + VERIFIED_EXTENSION:
        subscription.expires_at = now + VERIFIED_EXTENSION
    db.commit()
    db.refresh(subscription)
    return subscription


def deactivate(db: Session, subscription: Subscription) -> Subscription:
    """Explicit deletion or remote 'gone' signal; the row is kept."""
    subscription.is_active = False
    db.commit()
    db.refresh(subscription)
    return subscription


def _default_client(account: Account) -> FicApiClient:
    return FicApiClient.for_account(account)


def _handle_auth_failure(db: Session, account: Account, exc: FicApiError) -> None:
    if exc.is_auth_error and account.status == AccountStatus.ACTIVE.value:
        account_service.transition_status(
            db, account, AccountStatus.NEEDS_REFRESH, "Access token expired or invalid"
        )


async def delete_subscription(
    db: Session,
    subscription: Subscription,
    client_factory: ClientFactory | None = None,
) -> Subscription:
    """
    Delete the subscription on FIC, then deactivate the local row.

    A remote 404/410 still deactivates; any other FIC error leaves the row
    active and is re-raised.
    """
    account = account_service.get_account(db, subscription.account_id)
    context = build_log_context(
        account_id=subscription.account_id, event_group=subscription.event_group
    )
    if account is not None and account.access_token:
        client = (client_factory or _default_client)(account)
        try:
            await client.delete_subscription(subscription.fic_subscription_id)
        except FicApiError as exc:
            if exc.http_status not in GONE_STATUSES:
                _handle_auth_failure(db, account, exc)
                raise
            logger.info(
                "FIC subscription %s already gone upstream",
                subscription.fic_subscription_id,
                extra=context,
            )
    else:
        logger.warning(
            "FIC subscription %s deactivated locally only: account has no access token",
            subscription.fic_subscription_id,
            extra=context,
        )

    subscription = deactivate(db, subscription)
    logger.info(
        "FIC subscription %s deleted", subscription.fic_subscription_id, extra=context
    )
    return subscription


async def register_subscription(
    db: Session,
    account: Account,
    event_group: str,
    types: list[str] | None = None,
    client_factory: ClientFactory | None = None,
) -> Subscription:
    """
    Create (or renew, when one is active) the FIC subscription for a group.

    Auth failures move the account to needs_refresh before re-raising; a
    renewal answered 404/410 deactivates the local row before re-raising.
    """
    if not is_valid_event_group(event_group):
        raise ValueError(f"Invalid event group: {event_group!r}")
    event_types = list(types or EVENT_GROUP_TYPES.get(event_group) or [])
    if not event_types:
        raise ValueError(f"No event types given for event group {event_group!r}")

    existing = get_active_subscription(db, account.id, event_group)
    client = (client_factory or _default_client)(account)
    try:
        result = await client.create_or_renew_subscription(
            sink=build_sink_url(account.id, event_group),
            types=event_types,
            existing_subscription_id=existing.fic_subscription_id if existing else None,
        )
    except FicApiError as exc:
        _handle_auth_failure(db, account, exc)
        if existing is not None and exc.http_status in GONE_STATUSES:
            logger.warning(
                "FIC subscription %s is gone upstream, deactivating",
                existing.fic_subscription_id,
                extra=build_log_context(account_id=account.id, event_group=event_group),
            )
            deactivate(db, existing)
        raise

    subscription = save_subscription(
        db,
        account,
        fic_subscription_id=result["id"],
        event_group=event_group,
        secret=result.get("secret"),
        expires_at=result.get("expires_at"),
        event_types=event_types,
    )
    logger.info(
        "FIC subscription %s registered",
        subscription.fic_subscription_id,
        extra=build_log_context(account_id=account.id, event_group=event_group),
    )
    return subscription


@dataclass
class RefreshSummary:
    checked: int = 0
    renewed: int = 0
    skipped: int = 0
    deactivated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def expiring_subscriptions(db: Session, days: int, now: datetime | None = None) -> list[Subscription]:
    cutoff = (now or now_utc()) + timedelta(days=days)
    return list(
        db.scalars(
            select(Subscription)
            .where(
                Subscription.is_active.is_(True),
                Subscription.expires_at.is_not(None),
                Subscription.expires_at <= cutoff,
            )
            .order_by(Subscription.expires_at)
        )
    )


async def refresh_expiring_subscriptions(
    db: Session,
    days: int | None = None,
    client_factory: ClientFactory | None = None,
) -> RefreshSummary:
    """
    Renew active subscriptions expiring within ``days``.

    Already-expired subscriptions are skipped (FIC no longer accepts a
    renewal for them), ones FIC reports gone are deactivated, and one
    failure does not stop the sweep.
    """
    days = settings.SUBSCRIPTION_REFRESH_DAYS if days is None else days
    now = now_utc()
    summary = RefreshSummary()

    for subscription in expiring_subscriptions(db, days, now):
        summary.checked += 1
        context = build_log_context(
            account_id=subscription.account_id, event_group=subscription.event_group
        )
        account = account_service.get_account(db, subscription.account_id)
        if account is None or not account.access_token:
            summary.failed += 1
            summary.errors.append(f"subscription {subscription.id}: account has no access token")
            logger.warning("FIC subscription refresh: account missing access token", extra=context)
            continue

        if as_utc(subscription.expires_at) < now:
            summary.skipped += 1
            logger.warning(
                "FIC subscription refresh: skipping expired subscription %s",
                subscription.id,
                extra=context,
            )
            continue

        try:
            await register_subscription(
                db,
                account,
                subscription.event_group,
                types=subscription.event_types,
                client_factory=client_factory,
            )
            summary.renewed += 1
        except (FicApiError, ValueError) as exc:
            if getattr(exc, "http_status", None) in GONE_STATUSES:
                summary.deactivated += 1
                continue
            summary.failed += 1
            summary.errors.append(f"subscription {subscription.id}: {exc}")
            logger.error(
                "FIC subscription refresh failed for %s: %s",
                subscription.id,
                exc,
                extra=context,
            )

    logger.info(
        "FIC subscription refresh: %s renewed, %s skipped, %s deactivated, %s failed",
        summary.renewed,
        summary.skipped,
        summary.deactivated,
        summary.failed,
    )
    return summary
