"""Redis clients for the rate-limit store and the broadcast backplane."""

from __future__ import annotations

from ficsync.core.config import settings

REDIS_DISABLED_URL = "memory://"
REDIS_MAX_CONNECTIONS = 20
REDIS_TIMEOUT_SECONDS = 2.0

_async_client = None


def get_redis_url() -> str | None:
    """Configured Redis URL, or None when Redis is disabled."""
    url = (settings.REDIS_URL or "").strip()
    if not url or url.lower() == REDIS_DISABLED_URL:
        return None
    return url


def redis_is_reachable(url: str) -> bool:
    """One-shot PING used at startup to pick the rate-limit storage."""
    import redis

    client = redis.from_url(url, socket_connect_timeout=1)
    try:
        return bool(client.ping())
    except redis.RedisError:
        return False
    finally:
        client.close()


def get_async_redis_client():
    """Shared asyncio client, created lazily. None when Redis is disabled."""
    url = get_redis_url()
    if not url:
        return None

    global _async_client
    if _async_client is None:
        import redis.asyncio as redis

        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=REDIS_TIMEOUT_SECONDS,
            socket_timeout=REDIS_TIMEOUT_SECONDS,
            retry_on_timeout=True,
        )
        _async_client = redis.Redis(connection_pool=pool)
    return _async_client
