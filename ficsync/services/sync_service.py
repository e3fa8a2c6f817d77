"""Resource sync engine.

Fetches current FIC state for a resource and upserts it keyed by
(account_id, fic_id), so replaying a notification converges on the same
rows. Deletes remove the local row. Every successful change is announced
with a best-effort ``resource.synced`` broadcast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ficsync.core import websocket
from ficsync.core.exceptions import ExternalFetchFailed, FicApiError
from ficsync.core.structured_logging import build_log_context
from ficsync.db.enums import ResourceType, SyncAction
from ficsync.db.models import Account, Client, Invoice, Quote, Supplier
from ficsync.services import account_service
from ficsync.services.fic_api import DEFAULT_PAGE_SIZE, ResourcePage
from ficsync.utils.datetime_parsing import now_utc

logger = logging.getLogger(__name__)

RESOURCE_SYNCED_EVENT = "resource.synced"

RESOURCE_MODELS = {
    ResourceType.CLIENT: Client,
    ResourceType.SUPPLIER: Supplier,
    ResourceType.INVOICE: Invoice,
    ResourceType.QUOTE: Quote,
}

ENTITY_FIELDS = ("name", "code", "vat_number", "fic_created_at", "fic_updated_at", "raw")
DOCUMENT_FIELDS = ("number", "status", "total_gross", "fic_date", "fic_created_at", "raw")

RESOURCE_FIELDS = {
    ResourceType.CLIENT: ENTITY_FIELDS,
    ResourceType.SUPPLIER: ENTITY_FIELDS,
    ResourceType.INVOICE: DOCUMENT_FIELDS,
    ResourceType.QUOTE: DOCUMENT_FIELDS,
}

Publisher = Callable[[str, str, dict[str, Any]], Awaitable[None]]


class ResourceFetcher(Protocol):
    async def fetch_resource(self, resource_type: ResourceType, fic_id: int) -> dict[str, Any]:
        """Return normalized column values plus ``raw``."""


class ResourceLister(Protocol):
    async def list_resources(
        self, resource_type: ResourceType, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> ResourcePage:
        """Return one page of normalized items."""


@dataclass
class SyncResult:
    resource_type: ResourceType
    fic_id: int
    action: SyncAction
    changed: bool
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    succeeded: list[SyncResult] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def serialize_resource(resource_type: ResourceType, row) -> dict[str, Any]:
    """Normalized columns of a synced row (without ``raw``)."""
    data = {"id": row.id, "fic_id": row.fic_id, "account_id": row.account_id}
    for name in RESOURCE_FIELDS[resource_type]:
        if name != "raw":
            data[name] = _json_safe(getattr(row, name))
    return data


def get_resource(db: Session, account_id: int, resource_type: ResourceType, fic_id: int):
    model = RESOURCE_MODELS[ResourceType(resource_type)]
    return db.scalar(select(model).where(model.account_id == account_id, model.fic_id == fic_id))


def list_resources(db: Session, account_id: int, resource_type: ResourceType) -> list:
    model = RESOURCE_MODELS[ResourceType(resource_type)]
    return list(db.scalars(select(model).where(model.account_id == account_id).order_by(model.fic_id)))


def upsert_resource(
    db: Session, account_id: int, resource_type: ResourceType, data: dict[str, Any]
) -> tuple[Any, bool]:
    """
    Update the (account_id, fic_id) row if present, insert it otherwise.

    Returns (row, created). A concurrent insert that wins the unique race
    turns this call into an update.
    """
    resource_type = ResourceType(resource_type)
    model = RESOURCE_MODELS[resource_type]
    fic_id = int(data["id"])
    values = {name: data.get(name) for name in RESOURCE_FIELDS[resource_type]}

    row = get_resource(db, account_id, resource_type, fic_id)
    if row is None:
        row = model(account_id=account_id, fic_id=fic_id, **values)
        db.add(row)
        try:
            db.commit()
            db.refresh(row)
            return row, True
        except IntegrityError:
            db.rollback()
            row = get_resource(db, account_id, resource_type, fic_id)
            if row is None:
                raise

    for name, value in values.items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return row, False


def delete_resource(db: Session, account_id: int, resource_type: ResourceType, fic_id: int) -> bool:
    """Delete the local row; False when nothing matched."""
    model = RESOURCE_MODELS[ResourceType(resource_type)]
    result = db.execute(
        delete(model).where(model.account_id == account_id, model.fic_id == fic_id)
    )
    db.commit()
    return (result.rowcount or 0) > 0


async def _announce(
    publisher: Publisher,
    account_id: int,
    result: SyncResult,
) -> None:
    payload = {
        "resource_type": result.resource_type.value,
        "fic_id": result.fic_id,
        "account_id": account_id,
        "action": result.action.value,
        "data": result.data,
        "synced_at": now_utc().isoformat(),
    }
    try:
        await publisher(websocket.account_channel(account_id), RESOURCE_SYNCED_EVENT, payload)
    except Exception as exc:
        logger.warning(
            "Failed to broadcast resource.synced: %s",
            exc,
            extra=build_log_context(
                account_id=account_id,
                resource_type=result.resource_type.value,
                fic_id=result.fic_id,
            ),
        )


async def sync_resource(
    db: Session,
    account: Account,
    resource_type: ResourceType,
    fic_id: int,
    action: SyncAction,
    fetcher: ResourceFetcher,
    publisher: Publisher | None = None,
) -> SyncResult:
    """
    Apply one upstream change locally.

    Raises ExternalFetchFailed when the fetch or the write fails, and lets
    an auth FicApiError (401/403) through unchanged.
    """
    resource_type = ResourceType(resource_type)
    publisher = publisher or websocket.publish
    context = build_log_context(
        account_id=account.id, resource_type=resource_type.value, fic_id=fic_id
    )

    if action == SyncAction.DELETED:
        try:
            deleted = delete_resource(db, account.id, resource_type, fic_id)
        except SQLAlchemyError as exc:
            db.rollback()
            raise ExternalFetchFailed(resource_type.value, fic_id, str(exc)) from exc
        result = SyncResult(resource_type, fic_id, action, changed=deleted, data={"fic_id": fic_id})
        if not deleted:
            logger.warning("Delete for unknown %s %s ignored", resource_type.value, fic_id, extra=context)
            return result
        await _announce(publisher, account.id, result)
        return result

    try:
        data = await fetcher.fetch_resource(resource_type, fic_id)
    except FicApiError as exc:
        if exc.is_auth_error:
            # the token is dead for every sibling id too; let the job retry
            raise
        raise ExternalFetchFailed(resource_type.value, fic_id, str(exc)) from exc

    try:
        row, created = upsert_resource(db, account.id, resource_type, {**data, "id": fic_id})
    except SQLAlchemyError as exc:
        db.rollback()
        raise ExternalFetchFailed(resource_type.value, fic_id, str(exc)) from exc

    result = SyncResult(
        resource_type,
        fic_id,
        action,
        changed=True,
        data=serialize_resource(resource_type, row),
    )
    logger.info(
        "%s %s %s", resource_type.value, fic_id, "created" if created else "updated", extra=context
    )
    await _announce(publisher, account.id, result)
    return result


async def sync_batch(
    db: Session,
    account: Account,
    resource_type: ResourceType,
    action: SyncAction,
    fic_ids: list[int],
    fetcher: ResourceFetcher,
    publisher: Publisher | None = None,
) -> BatchResult:
    """
    Sync ids one by one in delivered order.

    A failing id is logged and skipped; its siblings still run. An auth
    FicApiError stops the batch since no sibling can succeed either.
    """
    batch = BatchResult()
    for fic_id in fic_ids:
        try:
            result = await sync_resource(
                db, account, resource_type, fic_id, action, fetcher, publisher
            )
        except ExternalFetchFailed as exc:
            batch.failed[fic_id] = exc.reason
            logger.error(
                "Sync failed for %s %s: %s",
                resource_type.value,
                fic_id,
                exc.reason,
                extra={
                    **build_log_context(
                        account_id=account.id, resource_type=resource_type.value, fic_id=fic_id
                    ),
                    "error": exc.reason,
                },
            )
            continue
        batch.succeeded.append(result)

    account_service.touch_last_sync(db, account)
    return batch


# =============================================================================
# Full sync
# =============================================================================


@dataclass
class FullSyncSummary:
    resource_type: ResourceType
    total: int = 0
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return self.created + self.updated


async def full_sync(
    db: Session,
    account: Account,
    resource_types: list[ResourceType],
    lister: ResourceLister,
    per_page: int = DEFAULT_PAGE_SIZE,
) -> list[FullSyncSummary]:
    """
    Page through every listed resource and upsert it.

    Uses the same (account_id, fic_id) upsert as notifications, so running
    it twice converges on the same rows. A failing page ends that type's
    sweep and is reported; an auth FicApiError stops the whole run.
    """
    summaries = []
    for resource_type in resource_types:
        resource_type = ResourceType(resource_type)
        summary = FullSyncSummary(resource_type)
        context = build_log_context(account_id=account.id, resource_type=resource_type.value)
        page = 1
        while True:
            try:
                listing = await lister.list_resources(resource_type, page=page, per_page=per_page)
            except FicApiError as exc:
                if exc.is_auth_error:
                    raise
                summary.errors.append(f"page {page}: {exc}")
                logger.error("Full sync listing failed on page %s: %s", page, exc, extra=context)
                break

            summary.total = listing.total
            for data in listing.items:
                try:
                    _, created = upsert_resource(db, account.id, resource_type, data)
                except SQLAlchemyError as exc:
                    db.rollback()
                    summary.errors.append(f"{resource_type.value} {data['id']}: {exc}")
                    logger.error(
                        "Full sync upsert failed: %s",
                        exc,
                        extra=build_log_context(
                            account_id=account.id,
                            resource_type=resource_type.value,
                            fic_id=data["id"],
                        ),
                    )
                    continue
                if created:
                    summary.created += 1
                else:
                    summary.updated += 1

            if page >= listing.last_page:
                break
            page += 1

        logger.info(
            "Full sync of %s: %s created, %s updated, %s errors",
            resource_type.value,
            summary.created,
            summary.updated,
            len(summary.errors),
            extra=context,
        )
        summaries.append(summary)

    account_service.touch_last_sync(db, account)
    return summaries
