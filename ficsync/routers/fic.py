"""FIC router - OAuth connect flow and subscription management.

The OAuth routes are public (rate limited); everything else requires the
X-Internal-Secret header.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.core.deps import get_db, verify_internal_secret
from ficsync.core.exceptions import AccountNotFound
from ficsync.core.rate_limit import API_LIMIT, api_limit_disabled, limiter
from ficsync.db.enums import EventStatus, ResourceType
from ficsync.db.models import Subscription
from ficsync.schemas import AccountRead, EventRead, SubscriptionCreate, SubscriptionRead
from ficsync.services import (
    account_service,
    event_service,
    oauth_service,
    subscription_service,
)

router = APIRouter(prefix="/fic", tags=["fic"])
logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE_PATH = "/fic/oauth"
OAUTH_STATE_MAX_AGE = int(oauth_service.STATE_TTL.total_seconds())

internal_only = [Depends(verify_internal_secret)]


def _subscription_read(subscription: Subscription) -> SubscriptionRead:
    data = SubscriptionRead.model_validate(subscription)
    data.sink_url = subscription_service.build_sink_url(
        subscription.account_id, subscription.event_group
    )
    return data


def _get_account_or_404(db: Session, account_id: int):
    account = account_service.get_account(db, account_id)
    if account is None:
        raise AccountNotFound()
    return account


# =============================================================================
# OAuth
# =============================================================================


@router.get("/oauth/redirect")
@limiter.limit(API_LIMIT, exempt_when=api_limit_disabled)
def oauth_redirect(request: Request, tenant_id: str | None = Query(None, max_length=64)):
    """
    Start the FIC OAuth flow.

    The random state is bound to the tenant through a short-lived signed
    cookie checked on callback.
    """
    state, cookie = oauth_service.create_state_token(tenant_id)
    response = RedirectResponse(oauth_service.get_auth_url(state), status_code=302)
    response.set_cookie(
        oauth_service.STATE_COOKIE_NAME,
        cookie,
        max_age=OAUTH_STATE_MAX_AGE,
        path=OAUTH_STATE_COOKIE_PATH,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/oauth/callback")
@limiter.limit(API_LIMIT, exempt_when=api_limit_disabled)
async def oauth_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
):
    """
    Finish the OAuth flow: exchange the code and bind the company.

    Company selection errors surface as 409 with a descriptive message.
    """
    if error:
        logger.warning("FIC OAuth denied: %s", error)
        raise HTTPException(status_code=400, detail=f"Authorization denied: {error}")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    tenant_id = oauth_service.verify_state(
        state, request.cookies.get(oauth_service.STATE_COOKIE_NAME)
    )
    account = await oauth_service.complete_authorization(db, code, tenant_id)

    response = JSONResponse(
        AccountRead.model_validate(account).model_dump(mode="json"),
        status_code=status.HTTP_200_OK,
    )
    response.delete_cookie(oauth_service.STATE_COOKIE_NAME, path=OAUTH_STATE_COOKIE_PATH)
    return response


# =============================================================================
# Accounts and subscriptions (internal)
# =============================================================================


@router.get("/accounts", response_model=list[AccountRead], dependencies=internal_only)
def list_accounts(
    tenant_id: str | None = Query(None),
    db: Session = Depends(get_db),
):
    return account_service.list_accounts(db, tenant_id=tenant_id)


@router.get(
    "/accounts/{account_id}/subscriptions",
    response_model=list[SubscriptionRead],
    dependencies=internal_only,
)
def list_account_subscriptions(account_id: int, db: Session = Depends(get_db)):
    _get_account_or_404(db, account_id)
    return [
        _subscription_read(s)
        for s in subscription_service.list_subscriptions(db, account_id=account_id)
    ]


@router.post(
    "/accounts/{account_id}/subscriptions",
    response_model=SubscriptionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=internal_only,
)
async def register_account_subscription(
    account_id: int,
    data: SubscriptionCreate,
    db: Session = Depends(get_db),
):
    """Create or renew the FIC subscription for an event group."""
    account = _get_account_or_404(db, account_id)
    try:
        subscription = await subscription_service.register_subscription(
            db, account, data.event_group, types=data.types or None
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _subscription_read(subscription)


@router.delete(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionRead,
    dependencies=internal_only,
)
async def delete_subscription(subscription_id: int, db: Session = Depends(get_db)):
    """Delete on FIC and deactivate locally; later notifications for it get a 404."""
    subscription = subscription_service.get_subscription(db, subscription_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return _subscription_read(await subscription_service.delete_subscription(db, subscription))


@router.get(
    "/accounts/{account_id}/events",
    response_model=list[EventRead],
    dependencies=internal_only,
)
def list_account_events(
    account_id: int,
    resource_type: ResourceType | None = Query(None),
    event_status: EventStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    _get_account_or_404(db, account_id)
    return event_service.list_events(
        db,
        account_id=account_id,
        resource_type=resource_type,
        status=event_status,
        limit=limit,
    )
