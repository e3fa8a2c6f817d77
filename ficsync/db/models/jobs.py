"""Durable background job queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ficsync.db.base import Base
from ficsync.db.enums import DEFAULT_JOB_STATUS
from ficsync.db.types import JSONType


class Job(Base):
    """
    Background job for async processing.

    Used for: webhook notifications handed off by the HTTP endpoint.
    Worker polls for pending jobs whose run_at is due and processes them.
    A job left in status 'failed' is the dead-letter record.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "status", "run_at"),
        Index("idx_jobs_account", "account_id", "created_at"),
        Index("idx_jobs_lease", "status", "locked_until"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("fic_accounts.id", ondelete="CASCADE"),
        nullable=True,
    )

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{DEFAULT_JOB_STATUS.value}'"),
        default=DEFAULT_JOB_STATUS.value,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(
        Integer, server_default=text("0"), default=0, nullable=False
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, server_default=text("3"), default=3, nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Claim lease; a running job past it was abandoned by a dead worker
    locked_until: Mapped[datetime | None] = mapped_column(nullable=True)

    # Deduplication key for producers that may enqueue the same work twice
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
