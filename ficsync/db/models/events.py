"""Audit log of received webhook notifications."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ficsync.db.base import Base
from ficsync.db.enums import EventStatus
from ficsync.db.types import JSONType


class Event(Base):
    """
    One row per (notification, resource id).

    Append-only; rows only disappear through account deletion.
    """

    __tablename__ = "fic_events"
    __table_args__ = (
        Index("idx_fic_events_account_type_occurred", "account_id", "resource_type", "occurred_at"),
        Index("idx_fic_events_resource", "resource_type", "fic_resource_id"),
        Index("idx_fic_events_event_type", "event_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("fic_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    fic_resource_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{EventStatus.PENDING.value}'"),
        default=EventStatus.PENDING.value,
        nullable=False,
    )
    error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
