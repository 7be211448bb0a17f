"""
Order Engine — Redis client singleton (idempotency cache)
"""
import asyncio

import redis.asyncio as aioredis

from order_engine.core.config import get_settings

settings = get_settings()

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
        )
    return _redis_client


async def close_redis():
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def ping_redis(timeout: float | None = None) -> bool:
    """Round-trip PING bounded by `timeout` seconds (health checks)."""
    return await asyncio.wait_for(get_redis().ping(), timeout=timeout or settings.HEALTH_CHECK_TIMEOUT)
