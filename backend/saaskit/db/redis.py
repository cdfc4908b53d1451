"""Shared Redis client for billing locks.

Startup does not fail when Redis is down: the client reconnects on next
use, and /api/ready reports the outage until it does.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from saaskit.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


async def init_redis(url: str | None = None, client: redis.Redis | None = None) -> redis.Redis:
    """Install the shared client, building one from settings unless given.

    Returns the installed client.
    """
    global _redis

    if _redis is not None:
        return _redis

    settings = get_settings()
    _redis = client or redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_connect_timeout,
        health_check_interval=30,
    )

    try:
        await _redis.ping()
    except RedisError as exc:
        logger.warning("redis_unavailable_at_startup", error=str(exc))
    return _redis


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Return the shared client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping_redis() -> None:
    """Raises when Redis is unreachable or was never initialized."""
    await get_redis().ping()
