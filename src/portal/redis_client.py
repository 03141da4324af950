"""Optional Redis pool backing the ranking cache and the rate limiter.

Redis is never required: with no pool configured, or when the server is
unreachable, callers fall back to uncached and unthrottled behaviour.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

_pool: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Create the pool. An empty URL leaves Redis disabled."""
    global _pool  # noqa: PLW0603
    if not url:
        _pool = None
        return
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        socket_timeout=2.0,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_optional_redis() -> redis.Redis | None:
    """FastAPI dependency: the pool, or None when Redis is disabled."""
    return _pool


async def redis_status() -> str:
    """``ok``, ``disabled`` or ``unavailable: <reason>`` for the readiness probe."""
    if _pool is None:
        return "disabled"
    try:
        await _pool.ping()
    except (RedisError, OSError) as exc:
        return f"unavailable: {exc}"
    return "ok"
