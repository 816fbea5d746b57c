"""
Optional Redis pool.

Redis backs sign-in lockout, email throttling and request rate limiting. An
empty ``redis_url`` leaves the pool unset and each of those steps is skipped.
"""

import redis.asyncio as redis

_pool: redis.Redis | None = None


def connect(url: str | None, *, max_connections: int = 50) -> redis.Redis | None:
    """A new client for ``url``, or None when Redis is not configured."""
    if not url:
        return None
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str | None) -> None:
    global _pool  # noqa: PLW0603
    _pool = connect(url)


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """The shared client. Raises RuntimeError when Redis is not configured."""
    if _pool is None:
        msg = "Redis is not configured"
        raise RuntimeError(msg)
    return _pool


def get_optional_redis() -> redis.Redis | None:
    return _pool
