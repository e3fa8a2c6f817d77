"""Pydantic schemas for FIC accounts, subscriptions and events."""

from datetime import datetime

from pydantic import BaseModel, Field


class AccountRead(BaseModel):
    """Account response. Tokens are never serialized."""

    id: int
    tenant_id: str | None = None
    name: str | None = None
    company_id: int
    company_name: str | None = None
    status: str
    token_expires_at: datetime | None = None
    webhook_enabled: bool
    webhook_verified_at: datetime | None = None
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubscriptionCreate(BaseModel):
    """Request to register (or renew) a subscription for an event group."""

    event_group: str = Field(..., pattern=r"^[a-z_]+$", max_length=64)
    types: list[str] = Field(default_factory=list)


class SubscriptionRead(BaseModel):
    id: int
    account_id: int
    fic_subscription_id: str
    event_group: str
    event_types: list[str] | None = None
    expires_at: datetime | None = None
    is_active: bool
    verified_at: datetime | None = None
    sink_url: str | None = None

    model_config = {"from_attributes": True}


class EventRead(BaseModel):
    id: int
    account_id: int
    event_type: str
    resource_type: str
    fic_resource_id: int
    occurred_at: datetime
    status: str
    error: str | None = None

    model_config = {"from_attributes": True}


class SubscriptionRefreshResponse(BaseModel):
    checked: int
    renewed: int
    skipped: int
    deactivated: int
    failed: int
    errors: list[str]
