"""
Redis client initialization and connection management.

This module provides the Redis client used for token revocation and
for the Redis-backed ride change feed.
"""

import redis.asyncio as redis
from campus_shuttle.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except redis.RedisError:
        return False
