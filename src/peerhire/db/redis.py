"""Redis connection pool.

Learn: Redis holds rate-limit counters and spent wallet-challenge nonces. The pool is initialized in
the app lifespan; if Redis is down at startup the app runs without rate
limiting rather than refusing to start.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from peerhire.config import settings
from peerhire.errors import ServiceUnavailable

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.external_call_timeout_seconds,
    )
    # Verify connection
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def claim_once(key: str, ttl: int) -> bool:
    """SET NX with expiry: True only for the first claim of `key`.

    Without Redis every claim succeeds and the caller's own expiry is the
    only bound. A Redis failure mid-claim is a 503, never a silent pass.
    """
    if _redis is None:
        return True
    try:
        return bool(await _redis.set(key, "1", nx=True, ex=ttl))
    except RedisError as e:
        raise ServiceUnavailable() from e
