"""
Token Revocation using Redis.

Logging out blacklists the presented JWT until it would have expired
anyway, so a stolen token cannot be replayed after logout.
"""

import logging

from redis.exceptions import RedisError

from campus_shuttle.app.core import redis_client as redis_module
from campus_shuttle.app.core.config import settings

logger = logging.getLogger(__name__)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.

    Args:
        token: The JWT token string to revoke
        user_id: User ID who owns the token

    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        ttl_seconds = settings.access_token_expire_minutes * 60
        await redis_module.redis_client.setex(
            f"{TOKEN_BLACKLIST_PREFIX}{token}",
            ttl_seconds,
            str(user_id)  # Store user_id for audit purposes
        )
        return True
    except RedisError as e:
        logger.error("Error revoking token for user %s: %s", user_id, e)
        return False


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.

    Fails open: if Redis is down the token is treated as valid, the
    signature and expiry checks still apply.
    """
    try:
        exists = await redis_module.redis_client.exists(f"{TOKEN_BLACKLIST_PREFIX}{token}")
        return exists > 0
    except RedisError as e:
        logger.warning("Error checking token revocation: %s", e)
        return False
