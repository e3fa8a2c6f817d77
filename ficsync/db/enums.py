"""Enums shared by models, services and schemas."""

from enum import Enum


class AccountStatus(str, Enum):
    """Lifecycle status of a connected FIC account."""
    ACTIVE = "active"
    NEEDS_REFRESH = "needs_refresh"
    REVOKED = "revoked"
    SUSPENDED = "suspended"
    DISCONNECTED = "disconnected"


# Forward-only transitions; back to ACTIVE only via OAuth reconnect or a successful token refresh.
ACCOUNT_STATUS_TRANSITIONS: dict[AccountStatus, set[AccountStatus]] = {
    AccountStatus.ACTIVE: {
        AccountStatus.NEEDS_REFRESH,
        AccountStatus.REVOKED,
        AccountStatus.SUSPENDED,
        AccountStatus.DISCONNECTED,
    },
    AccountStatus.NEEDS_REFRESH: {
        AccountStatus.REVOKED,
        AccountStatus.SUSPENDED,
        AccountStatus.DISCONNECTED,
    },
    AccountStatus.SUSPENDED: {AccountStatus.REVOKED, AccountStatus.DISCONNECTED},
    AccountStatus.REVOKED: set(),
    AccountStatus.DISCONNECTED: set(),
}

# Statuses whose notifications are still synced
SYNCABLE_ACCOUNT_STATUSES = frozenset({AccountStatus.ACTIVE, AccountStatus.NEEDS_REFRESH})


class ResourceType(str, Enum):
    """FIC resource types mirrored locally."""
    CLIENT = "client"
    SUPPLIER = "supplier"
    INVOICE = "invoice"
    QUOTE = "quote"


class SyncAction(str, Enum):
    """What happened to a resource upstream."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EventStatus(str, Enum):
    """Processing status of an audit-log event."""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class JobType(str, Enum):
    """Types of background jobs."""
    FIC_WEBHOOK = "fic_webhook"


class JobStatus(str, Enum):
    """Status of background jobs."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS = JobStatus.PENDING
