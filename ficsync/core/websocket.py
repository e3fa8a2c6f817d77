"""
Real-time broadcaster for sync notifications.

Local WebSocket subscribers are tracked per channel
(``sync.account.{account_id}``). When Redis is configured every message is
also published on the Redis channel of the same name so other processes
(the worker, other API replicas) reach the same audience.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

from ficsync.core.exceptions import BroadcastFailed
from ficsync.core.redis_client import get_async_redis_client

logger = logging.getLogger(__name__)


def account_channel(account_id: int) -> str:
    return f"sync.account.{account_id}"


class ChannelManager:
    """Manages WebSocket connections per broadcast channel."""

    def __init__(self):
        # channel -> set of active WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, channel: str):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(channel, set()).add(websocket)

    async def disconnect(self, websocket: WebSocket, channel: str):
        async with self._lock:
            if channel in self._connections:
                self._connections[channel].discard(websocket)
                if not self._connections[channel]:
                    del self._connections[channel]

    async def send_to_channel(self, channel: str, message: dict) -> int:
        """Send a message to every local subscriber; returns deliveries."""
        async with self._lock:
            connections = self._connections.get(channel, set()).copy()

        if not connections:
            return 0

        data = json.dumps(message, default=str)
        closed = []
        delivered = 0

        for ws in connections:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        if closed:
            async with self._lock:
                if channel in self._connections:
                    for ws in closed:
                        self._connections[channel].discard(ws)
                    if not self._connections[channel]:
                        del self._connections[channel]
        return delivered

    def get_connected_count(self, channel: str) -> int:
        return len(self._connections.get(channel, set()))


# Singleton instance
manager = ChannelManager()


async def publish(channel: str, event_name: str, payload: dict[str, Any]) -> None:
    """
    Fire-and-forget publish to local subscribers and the Redis backplane.

    Raises BroadcastFailed when delivery could not be attempted; callers
    log and swallow it.
    """
    message = {"event": event_name, "channel": channel, "data": payload}
    try:
        await manager.send_to_channel(channel, message)
        client = get_async_redis_client()
        if client is not None:
            await client.publish(channel, json.dumps(message, default=str))
    except Exception as exc:
        raise BroadcastFailed(f"Failed to publish {event_name} on {channel}: {exc}") from exc
