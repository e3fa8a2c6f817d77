"""Fatture in Cloud notification job handlers."""

from __future__ import annotations

import logging

from ficsync.core.exceptions import (
    AccountNotFound,
    AccountUnavailable,
    FicApiError,
    UnknownEventType,
)
from ficsync.core.structured_logging import build_log_context, redact_payload
from ficsync.db.enums import (
    SYNCABLE_ACCOUNT_STATUSES,
    AccountStatus,
    EventStatus,
    ResourceType,
    SyncAction,
)
from ficsync.services import account_service, event_service, oauth_service, sync_service
from ficsync.services.event_types import resolve_event_type
from ficsync.services.fic_api import FicApiClient
from ficsync.services.webhooks.envelope import EventEnvelope
from ficsync.utils.datetime_parsing import parse_fic_datetime

logger = logging.getLogger(__name__)


def _client_for(account) -> FicApiClient:
    return FicApiClient.for_account(account)


async def process_fic_webhook(db, job) -> None:
    """
    Sync every resource id carried by one queued notification.

    Payload:
        - account_id: local account id
        - event_group: subscription group the notification arrived on
        - envelope: normalized CloudEvents attributes and resource ids
    """
    payload = job.payload or {}
    envelope = EventEnvelope.from_payload(payload.get("envelope") or {})
    account_id = payload.get("account_id") or job.account_id
    context = build_log_context(
        job_id=job.id,
        account_id=account_id,
        event_group=payload.get("event_group"),
        event_type=envelope.event_type,
    )

    account = account_service.get_account(db, int(account_id)) if account_id else None
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found")
    if AccountStatus(account.status) not in SYNCABLE_ACCOUNT_STATUSES:
        raise AccountUnavailable(account.id, account.status)

    if envelope.is_known:
        resource_type = ResourceType(envelope.resource_type)
        action = SyncAction(envelope.action)
    else:
        # payloads queued before the pair was resolved at receive time
        try:
            resource_type, action = resolve_event_type(envelope.event_type or "")
        except UnknownEventType as exc:
            logger.warning("Skipping notification: %s", exc.message, extra=context)
            return

    # raises TokenUnavailable (retried) rather than syncing with a dead token
    await oauth_service.ensure_fresh_token(db, account)

    try:
        batch = await sync_service.sync_batch(
            db,
            account,
            resource_type,
            action,
            envelope.resource_ids,
            _client_for(account),
        )
    except FicApiError as exc:
        logger.error("FIC rejected the access token: %s", exc, extra=context)
        if account.status == AccountStatus.ACTIVE.value:
            account_service.transition_status(
                db, account, AccountStatus.NEEDS_REFRESH, f"FIC API returned HTTP {exc.http_status}"
            )
        raise

    occurred_at = parse_fic_datetime(envelope.occurred_at)
    for result in batch.succeeded:
        event_service.record_event(
            db,
            account_id=account.id,
            event_type=envelope.event_type,
            resource_type=resource_type,
            fic_resource_id=result.fic_id,
            occurred_at=occurred_at,
            payload=redact_payload(result.data),
            commit=False,
        )
    for fic_id, reason in batch.failed.items():
        event_service.record_event(
            db,
            account_id=account.id,
            event_type=envelope.event_type,
            resource_type=resource_type,
            fic_resource_id=fic_id,
            occurred_at=occurred_at,
            payload={"envelope": envelope.to_payload()},
            status=EventStatus.FAILED,
            error=reason,
            commit=False,
        )
    db.commit()

    logger.info(
        "Notification processed: %s synced, %s failed",
        len(batch.succeeded),
        len(batch.failed),
        extra={**context, "resource_type": resource_type.value},
    )
