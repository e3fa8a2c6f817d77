"""Pydantic schemas for API request/response models."""

from ficsync.schemas.fic import (
    AccountRead,
    EventRead,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionRefreshResponse,
)

__all__ = [
    "AccountRead",
    "EventRead",
    "SubscriptionCreate",
    "SubscriptionRead",
    "SubscriptionRefreshResponse",
]
