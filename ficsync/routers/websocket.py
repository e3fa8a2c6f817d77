"""
WebSocket router for real-time sync notifications.

Clients subscribe to one account channel and receive ``webhook.received``
and ``resource.synced`` messages as JSON. Authenticated with the internal
secret, passed as ?secret=... since browsers cannot set headers here.
"""

import hmac

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ficsync.core.config import settings
from ficsync.core.websocket import account_channel, manager

router = APIRouter(prefix="/ws", tags=["WebSocket"])


@router.websocket("/accounts/{account_id}")
async def websocket_account_channel(
    websocket: WebSocket,
    account_id: int,
    secret: str | None = Query(None),
):
    if not settings.INTERNAL_SECRET or not secret or not hmac.compare_digest(
        secret, settings.INTERNAL_SECRET
    ):
        await websocket.close(code=4001, reason="Authentication required")
        return

    channel = account_channel(account_id)
    await manager.connect(websocket, channel)
    try:
        while True:
            try:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
            except WebSocketDisconnect:
                break
    finally:
        await manager.disconnect(websocket, channel)
