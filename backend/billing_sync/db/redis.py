"""Shared Redis client backing the webhook queue."""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from billing_sync.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


def build_redis(url: str, socket_timeout: float | None = None) -> redis.Redis:
    # Queue members and hash fields are plain strings
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


async def init_redis(url: str | None = None) -> None:
    """Create the shared client and verify connectivity."""
    global _redis

    if _redis is not None:
        return

    settings = get_settings()
    _redis = build_redis(url or settings.redis_url, socket_timeout=settings.redis_socket_timeout_seconds)
    await _redis.ping()


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def check_redis(client: redis.Redis | None = None) -> bool:
    """True if Redis answers PING. Never raises."""
    try:
        return bool(await (client or get_redis()).ping())
    except (RedisError, RuntimeError, OSError) as exc:
        logger.error("redis_check_failed", error=str(exc), error_type=type(exc).__name__)
        return False
