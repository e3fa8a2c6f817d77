"""Initial schema: accounts, subscriptions, events, jobs and synced resources

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
TS = sa.DateTime(timezone=True)

RESOURCE_TABLES = ("fic_clients", "fic_suppliers", "fic_invoices", "fic_quotes")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", TS, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", TS, server_default=sa.func.now(), nullable=False),
    ]


def _resource_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("fic_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("fic_id", sa.BigInteger(), nullable=False),
        sa.Column("raw", JSON, nullable=True),
        sa.Column("fic_created_at", TS, nullable=True),
    ]


def _entity_columns() -> list[sa.Column]:
    return [
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("code", sa.String(100), nullable=True),
        sa.Column("vat_number", sa.String(50), nullable=True),
        sa.Column("fic_updated_at", TS, nullable=True),
    ]


def _document_columns() -> list[sa.Column]:
    return [
        sa.Column("number", sa.String(100), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("total_gross", sa.Numeric(14, 2), nullable=True),
        sa.Column("fic_date", sa.Date(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "fic_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("company_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", TS, nullable=True),
        sa.Column("token_refreshed_at", TS, nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column("status_note", sa.Text(), nullable=True),
        sa.Column("webhook_enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("webhook_verified_at", TS, nullable=True),
        sa.Column("connected_at", TS, nullable=True),
        sa.Column("last_sync_at", TS, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_fic_accounts_tenant_id", "fic_accounts", ["tenant_id"])
    op.create_index("idx_fic_accounts_tenant_status", "fic_accounts", ["tenant_id", "status"])
    op.create_index("idx_fic_accounts_status_created", "fic_accounts", ["status", "created_at"])

    op.create_table(
        "fic_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("fic_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("fic_subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("event_group", sa.String(64), nullable=False),
        sa.Column("event_types", JSON, nullable=True),
        sa.Column("webhook_secret", sa.Text(), nullable=True),
        sa.Column("expires_at", TS, nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("verified_at", TS, nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "idx_fic_subscriptions_account_group", "fic_subscriptions", ["account_id", "event_group"]
    )
    op.create_index(
        "idx_fic_subscriptions_active_expires", "fic_subscriptions", ["is_active", "expires_at"]
    )

    op.create_table(
        "fic_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("fic_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(20), nullable=False),
        sa.Column("fic_resource_id", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", TS, nullable=False),
        sa.Column("payload", JSON, nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("error", sa.String(500), nullable=True),
        sa.Column("created_at", TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_fic_events_account_id", "fic_events", ["account_id"])
    op.create_index(
        "idx_fic_events_account_type_occurred",
        "fic_events",
        ["account_id", "resource_type", "occurred_at"],
    )
    op.create_index("idx_fic_events_resource", "fic_events", ["resource_type", "fic_resource_id"])
    op.create_index("idx_fic_events_event_type", "fic_events", ["event_type"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("fic_accounts.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("run_at", TS, server_default=sa.func.now(), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default=sa.text("3"), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", TS, server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", TS, nullable=True),
        sa.Column("failed_at", TS, nullable=True),
        sa.Column("locked_until", TS, nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True, unique=True),
    )
    op.create_index("idx_jobs_pending", "jobs", ["status", "run_at"])
    op.create_index("idx_jobs_account", "jobs", ["account_id", "created_at"])
    op.create_index("idx_jobs_lease", "jobs", ["status", "locked_until"])

    for table in RESOURCE_TABLES:
        extra = _entity_columns() if table in ("fic_clients", "fic_suppliers") else _document_columns()
        op.create_table(
            table,
            *_resource_columns(),
            *extra,
            *_timestamps(),
            sa.UniqueConstraint("account_id", "fic_id", name=f"uq_{table}_account_fic_id"),
        )
        op.create_index(f"ix_{table}_account_id", table, ["account_id"])


def downgrade() -> None:
    for table in reversed(RESOURCE_TABLES):
        op.drop_table(table)
    op.drop_table("jobs")
    op.drop_table("fic_events")
    op.drop_table("fic_subscriptions")
    op.drop_table("fic_accounts")
