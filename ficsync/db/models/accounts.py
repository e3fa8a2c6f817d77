"""FIC account binding and webhook subscription models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from ficsync.db.base import Base
from ficsync.db.enums import AccountStatus
from ficsync.db.types import EncryptedString, JSONType


class Account(Base):
    """
    Binding between a tenant (team) and one FIC company's OAuth credentials.

    Owns subscriptions, events and every synced resource; deleting the
    account cascades to all of them.
    """

    __tablename__ = "fic_accounts"
    __table_args__ = (
        Index("idx_fic_accounts_tenant_status", "tenant_id", "status"),
        Index("idx_fic_accounts_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    company_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    access_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    token_refreshed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{AccountStatus.ACTIVE.value}'"),
        default=AccountStatus.ACTIVE.value,
        nullable=False,
    )
    status_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    webhook_enabled: Mapped[bool] = mapped_column(
        Boolean, server_default=true(), default=True, nullable=False
    )
    webhook_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    connected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Subscription(Base):
    """
    A webhook subscription registered with FIC for one event group.

    (account_id, event_group) is unique in practice but enforced remotely,
    so there is no local constraint on it.
    """

    __tablename__ = "fic_subscriptions"
    __table_args__ = (
        Index("idx_fic_subscriptions_account_group", "account_id", "event_group"),
        Index("idx_fic_subscriptions_active_expires", "is_active", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("fic_accounts.id", ondelete="CASCADE"), nullable=False
    )
    fic_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_group: Mapped[str] = mapped_column(String(64), nullable=False)
    # CloudEvents types registered remotely; reused on renewal
    event_types: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, server_default=true(), default=True, nullable=False
    )
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
