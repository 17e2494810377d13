# calendar_sync/config/redis.py
"""Redis configuration and connection setup"""
from typing import Optional

import redis

from calendar_sync.config.settings import get_settings

settings = get_settings()

# Redis connection pool
_redis_pool: Optional[redis.ConnectionPool] = None


def get_redis_pool() -> redis.ConnectionPool:
    """Get or create Redis connection pool"""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
        )
    return _redis_pool


def get_redis() -> redis.Redis:
    """Get Redis client from pool"""
    return redis.Redis(connection_pool=get_redis_pool())


def account_sync_lock(account_id: str, client: Optional[redis.Redis] = None):
    """Per-account lock shared by the webhook and scheduled import paths"""
    client = client or get_redis()
    return client.lock(
        RedisKeys.ACCOUNT_SYNC_LOCK.format(account_id=account_id),
        timeout=settings.SYNC_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )


# Redis key patterns for different data types
class RedisKeys:
    """Redis key patterns for consistent naming"""

    ACCOUNT_SYNC_LOCK = "calendar_sync:account:{account_id}:import_lock"
