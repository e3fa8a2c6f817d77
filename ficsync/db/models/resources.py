"""Local mirrors of FIC resources (clients, suppliers, invoices, quotes).

Every table is unique on (account_id, fic_id); that pair is the upsert key
that makes replayed webhook notifications idempotent.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ficsync.db.base import Base
from ficsync.db.types import JSONType


class _SyncedResourceColumns:
    """Columns shared by every synced resource table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("fic_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fic_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    raw: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    fic_created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class _EntityColumns(_SyncedResourceColumns):
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vat_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fic_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)


class _DocumentColumns(_SyncedResourceColumns):
    number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    total_gross: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    fic_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class Client(_EntityColumns, Base):
    __tablename__ = "fic_clients"
    __table_args__ = (
        UniqueConstraint("account_id", "fic_id", name="uq_fic_clients_account_fic_id"),
    )


class Supplier(_EntityColumns, Base):
    __tablename__ = "fic_suppliers"
    __table_args__ = (
        UniqueConstraint("account_id", "fic_id", name="uq_fic_suppliers_account_fic_id"),
    )


class Invoice(_DocumentColumns, Base):
    __tablename__ = "fic_invoices"
    __table_args__ = (
        UniqueConstraint("account_id", "fic_id", name="uq_fic_invoices_account_fic_id"),
    )


class Quote(_DocumentColumns, Base):
    __tablename__ = "fic_quotes"
    __table_args__ = (
        UniqueConstraint("account_id", "fic_id", name="uq_fic_quotes_account_fic_id"),
    )
