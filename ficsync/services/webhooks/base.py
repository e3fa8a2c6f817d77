"""Webhook handler interface."""

from __future__ import annotations

from typing import Protocol

from fastapi import Request
from sqlalchemy.orm import Session

WebhookResult = dict


class WebhookHandler(Protocol):
    async def verify(
        self, request: Request, db: Session, account_id: int, event_group: str
    ) -> WebhookResult:
        """Answer the subscription verification handshake."""

    async def handle(
        self, request: Request, db: Session, account_id: int, event_group: str
    ) -> WebhookResult:
        """Accept an event notification for asynchronous processing."""
