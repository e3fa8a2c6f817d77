"""Event service - append-only audit log of processed notifications."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficsync.db.enums import EventStatus, ResourceType
from ficsync.db.models import Event
from ficsync.utils.datetime_parsing import now_utc

MAX_EVENT_ERROR_LENGTH = 500


def record_event(
    db: Session,
    *,
    account_id: int,
    event_type: str,
    resource_type: ResourceType,
    fic_resource_id: int,
    occurred_at: datetime | None,
    payload: dict | None,
    status: EventStatus = EventStatus.PROCESSED,
    error: str | None = None,
    commit: bool = True,
) -> Event:
    """Append one event row for a (notification, resource id) pair."""
    event = Event(
        account_id=account_id,
        event_type=event_type,
        resource_type=ResourceType(resource_type).value,
        fic_resource_id=fic_resource_id,
        occurred_at=occurred_at or now_utc(),
        payload=payload,
        status=status.value,
        error=error[:MAX_EVENT_ERROR_LENGTH] if error else None,
    )
    db.add(event)
    if commit:
        db.commit()
        db.refresh(event)
    return event


def list_events(
    db: Session,
    account_id: int | None = None,
    resource_type: ResourceType | None = None,
    event_type: str | None = None,
    status: EventStatus | None = None,
    limit: int = 50,
) -> list[Event]:
    """Most recent events first, with optional filters."""
    stmt = select(Event)
    if account_id is not None:
        stmt = stmt.where(Event.account_id == account_id)
    if resource_type:
        stmt = stmt.where(Event.resource_type == ResourceType(resource_type).value)
    if event_type:
        stmt = stmt.where(Event.event_type.contains(event_type))
    if status:
        stmt = stmt.where(Event.status == status.value)
    return list(db.scalars(stmt.order_by(Event.occurred_at.desc(), Event.id.desc()).limit(limit)))
