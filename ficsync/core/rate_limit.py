"""Per-IP rate limiting for the webhook endpoint and management API.

The webhook route allows 1 request/second per source IP (fixed window,
counted atomically by the `limits` storage backend). Keys are the client
IP only: senders behind a shared NAT or proxy share one budget.
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from ficsync.core.config import settings
from ficsync.core.redis_client import get_redis_url, redis_is_reachable

logger = logging.getLogger(__name__)

WEBHOOK_LIMIT = settings.RATE_LIMIT_WEBHOOK
# Public OAuth routes; RATE_LIMIT_API <= 0 exempts them
API_LIMIT = f"{max(settings.RATE_LIMIT_API, 1)}/minute"


def api_limit_disabled() -> bool:
    return settings.RATE_LIMIT_API <= 0


def client_ip_key(request: Request) -> str:
    """Source IP, honouring X-Forwarded-For only when proxy headers are trusted."""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request)


def _storage_uri() -> str:
    url = get_redis_url()
    if not url:
        return "memory://"
    # Fall back to memory if Redis is configured but down (dev)
    if redis_is_reachable(url):
        return url
    logger.warning("Redis unavailable for rate limiting, using in-memory storage")
    return "memory://"


limiter = Limiter(
    key_func=client_ip_key,
    storage_uri=_storage_uri(),
    strategy="fixed-window",
)
