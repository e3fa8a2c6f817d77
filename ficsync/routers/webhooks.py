"""Webhooks router - Fatture in Cloud notification endpoint.

GET answers the subscription verification handshake, POST accepts CloudEvents
notifications and queues them. Every other method or malformed path under
/webhooks is a 405.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ficsync.core.config import settings
from ficsync.core.deps import get_db
from ficsync.core.exceptions import MethodNotAllowed
from ficsync.core.rate_limit import WEBHOOK_LIMIT, limiter
from ficsync.core.webhook_security import WebhookSecurityConfig, WebhookVerifier
from ficsync.services.job_service import RetryPolicy
from ficsync.services.subscription_service import is_valid_event_group
from ficsync.services.webhooks.base import WebhookHandler
from ficsync.services.webhooks.fic import FicWebhookHandler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def get_webhook_handler() -> WebhookHandler:
    """Handler wired from settings; override in tests."""
    return FicWebhookHandler(
        WebhookVerifier(WebhookSecurityConfig.from_settings(settings)),
        RetryPolicy.from_settings(settings),
        max_payload_bytes=settings.FIC_WEBHOOK_MAX_PAYLOAD_BYTES,
    )


def _parse_route(account_id: str, event_group: str) -> int:
    if not account_id.isdigit() or not is_valid_event_group(event_group):
        raise MethodNotAllowed()
    return int(account_id)


@router.get("/{account_id}/{event_group}")
@limiter.limit(WEBHOOK_LIMIT)
async def verify_fic_webhook(
    request: Request,
    account_id: str,
    event_group: str,
    db: Session = Depends(get_db),
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """Echo the FIC verification challenge."""
    return await handler.verify(request, db, _parse_route(account_id, event_group), event_group)


@router.post("/{account_id}/{event_group}", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(WEBHOOK_LIMIT)
async def receive_fic_webhook(
    request: Request,
    account_id: str,
    event_group: str,
    db: Session = Depends(get_db),
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """
    Receive a FIC notification.

    Returns 202 once the job is queued; syncing happens in the worker.
    """
    return await handler.handle(request, db, _parse_route(account_id, event_group), event_group)


@router.api_route("", methods=ALL_METHODS, include_in_schema=False)
@router.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def webhook_method_not_allowed(request: Request):
    raise MethodNotAllowed()
