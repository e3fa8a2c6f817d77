"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron (systemd timer, Kubernetes CronJob, ...).
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.core.deps import get_db, verify_internal_secret
from ficsync.schemas import SubscriptionRefreshResponse
from ficsync.services import subscription_service

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)
logger = logging.getLogger(__name__)


@router.post("/subscription-refresh", response_model=SubscriptionRefreshResponse)
async def refresh_subscriptions(
    days: int = Query(settings.SUBSCRIPTION_REFRESH_DAYS, ge=1, le=365),
    db: Session = Depends(get_db),
):
    """
    Renew active FIC subscriptions expiring within ``days``.

    Already-expired subscriptions are reported as skipped; they must be
    registered again.
    """
    summary = await subscription_service.refresh_expiring_subscriptions(db, days=days)
    logger.info(
        "Subscription refresh: checked=%s renewed=%s skipped=%s deactivated=%s failed=%s",
        summary.checked,
        summary.renewed,
        summary.skipped,
        summary.deactivated,
        summary.failed,
    )
    return SubscriptionRefreshResponse(
        checked=summary.checked,
        renewed=summary.renewed,
        skipped=summary.skipped,
        deactivated=summary.deactivated,
        failed=summary.failed,
        errors=summary.errors,
    )
