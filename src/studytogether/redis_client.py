"""Redis connection pool and key helpers.

Redis holds only short-lived counters (rate limits, login lockout, OTP
attempts, resend cooldowns). Nothing in it is authoritative study data.
"""

import redis.asyncio as redis

KEY_PREFIX = "study"

_pool: redis.Redis | None = None


def redis_key(*parts: object) -> str:
    """Build a namespaced key, e.g. redis_key("otp_attempts", 7) -> "study:otp_attempts:7"."""
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


async def init_redis(url: str) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


def use_redis(client: redis.Redis) -> None:
    """Install an already-built client (e.g. an in-process fake for tests)."""
    global _pool  # noqa: PLW0603
    _pool = client


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client (FastAPI dependency)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


async def incr_with_ttl(client: redis.Redis, key: str, ttl_seconds: int) -> int:
    """Increment a counter, starting its expiry window on the first hit."""
    count = await client.incr(key)
    if count == 1:
        await client.expire(key, ttl_seconds)
    return int(count)
