"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from redis.asyncio import Redis

from luxicle.redis_client import get_optional_redis


async def get_redis_dep() -> AsyncGenerator[Redis | None, None]:
    """Yield the Redis client, or None when Redis is not configured."""
    yield get_optional_redis()
