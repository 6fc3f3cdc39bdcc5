"""Redis client used for sweeper leader election.

Usage:
    from marketplace_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    lock = redis.lock("sweeper:leader", timeout=55)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from marketplace_escrow.config import get_settings
from marketplace_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis | None:
    """Initialize and return the Redis client. Called during app startup.

    Returns None when no Redis URL is configured.
    """
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        logger.info("redis.disabled")
        return None
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    # Verify connectivity
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
