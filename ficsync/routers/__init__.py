"""API routers."""

from ficsync.routers.fic import router as fic_router
from ficsync.routers.internal import router as internal_router
from ficsync.routers.webhooks import router as webhooks_router
from ficsync.routers.websocket import router as websocket_router

__all__ = [
    "fic_router",
    "internal_router",
    "webhooks_router",
    "websocket_router",
]
