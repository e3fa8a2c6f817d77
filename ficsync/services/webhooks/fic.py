"""Fatture in Cloud webhook handler.

GET is the subscription verification handshake; POST is a CloudEvents
notification that is authenticated, normalized and queued. Nothing here
calls the FIC API: the sender expects a fast answer and disables
subscriptions that respond slowly.
"""

from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ficsync.core import websocket
from ficsync.core.exceptions import (
    EmptyResourceIds,
    EnqueueFailed,
    InvalidPayload,
    MissingChallenge,
    MissingEventType,
    PayloadTooLarge,
    SubscriptionNotFound,
    WebhookAuthError,
)
from ficsync.core.structured_logging import build_log_context
from ficsync.core.webhook_security import WebhookVerifier
from ficsync.db.enums import JobType
from ficsync.services import account_service, job_service, subscription_service
from ficsync.services.job_service import RetryPolicy
from ficsync.services.webhooks.envelope import build_envelope, parse_body

logger = logging.getLogger(__name__)

CHALLENGE_HEADER = "x-fic-verification-challenge"
WEBHOOK_RECEIVED_EVENT = "webhook.received"
ACCEPTED_RESPONSE = {"status": "accepted", "message": "Webhook queued for processing"}
IGNORED_RESPONSE = {"status": "ignored", "message": "Unknown event type"}


async def _read_body_safe(request: Request, max_bytes: int) -> bytes:
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise PayloadTooLarge()
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > max_bytes:
            raise PayloadTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


class FicWebhookHandler:
    def __init__(
        self,
        verifier: WebhookVerifier,
        retry_policy: RetryPolicy,
        max_payload_bytes: int = 100_000,
    ):
        self.verifier = verifier
        self.retry_policy = retry_policy
        self.max_payload_bytes = max_payload_bytes

    async def verify(self, request: Request, db: Session, account_id: int, event_group: str) -> dict:
        """
        Echo the verification challenge.

        The header wins over the query parameter. Marking the subscription
        verified is the only state change.
        """
        subscription = subscription_service.get_active_subscription(db, account_id, event_group)
        if subscription is None:
            raise SubscriptionNotFound()

        challenge = request.headers.get(CHALLENGE_HEADER) or request.query_params.get(CHALLENGE_HEADER)
        if not challenge:
            raise MissingChallenge()

        subscription_service.mark_verified(db, subscription)
        account = account_service.get_account(db, account_id)
        if account is not None:
            account_service.mark_webhook_verified(db, account)

        logger.info(
            "FIC webhook verification answered",
            extra=build_log_context(account_id=account_id, event_group=event_group),
        )
        return {"verification": challenge}

    async def handle(self, request: Request, db: Session, account_id: int, event_group: str) -> dict:
        """Authenticate, normalize and enqueue one notification."""
        context = build_log_context(account_id=account_id, event_group=event_group)

        subscription = subscription_service.get_active_subscription(db, account_id, event_group)
        if subscription is None:
            logger.warning("FIC webhook for unknown or inactive subscription", extra=context)
            raise SubscriptionNotFound()

        body = await _read_body_safe(request, self.max_payload_bytes)
        parsed = parse_body(body)
        envelope = build_envelope(request.headers, parsed)

        try:
            self.verifier.verify_signature(subscription.webhook_secret, body, request.headers)
            self.verifier.verify_token(
                request.headers, ce_id=envelope.ce_id, subject=envelope.subject
            )
        except WebhookAuthError as exc:
            logger.warning("FIC webhook rejected: %s", exc.message, extra=context)
            raise

        if parsed is None or not envelope.ids_valid:
            raise InvalidPayload()
        if not envelope.event_type:
            raise MissingEventType()
        if not envelope.resource_ids:
            logger.warning(
                "FIC webhook with empty ids",
                extra={**context, "event_type": envelope.event_type},
            )
            raise EmptyResourceIds()
        if not envelope.is_known:
            # acknowledged so FIC keeps the subscription, but never queued
            logger.warning(
                "FIC webhook ignored: unknown event type %s",
                envelope.event_type,
                extra={**context, "event_type": envelope.event_type, "ce_id": envelope.ce_id},
            )
            return IGNORED_RESPONSE

        try:
            job = job_service.schedule_job(
                db,
                JobType.FIC_WEBHOOK,
                payload={
                    "account_id": account_id,
                    "event_group": event_group,
                    "envelope": envelope.to_payload(),
                },
                account_id=account_id,
                max_attempts=self.retry_policy.max_attempts,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to queue FIC webhook job", extra=context)
            raise EnqueueFailed()

        logger.info(
            "FIC webhook queued as job %s (%s ids)",
            job.id,
            len(envelope.resource_ids),
            extra={
                **context,
                "event_type": envelope.event_type,
                "resource_type": envelope.resource_type,
                "job_id": job.id,
            },
        )

        try:
            await websocket.publish(
                websocket.account_channel(account_id),
                WEBHOOK_RECEIVED_EVENT,
                {
                    "account_id": account_id,
                    "event_group": event_group,
                    "event_type": envelope.event_type,
                    "ce_id": envelope.ce_id,
                    "ce_time": envelope.occurred_at,
                    "ce_subject": envelope.subject,
                    "ids": envelope.resource_ids,
                },
            )
        except Exception as exc:
            logger.warning("Failed to broadcast webhook.received: %s", exc, extra=context)

        return ACCEPTED_RESPONSE
