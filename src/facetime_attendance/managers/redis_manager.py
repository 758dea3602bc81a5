"""
Redis manager for the Redis-backed challenge cache.

The async client is created lazily on first use, so processes running with
the in-memory challenge backend never open a Redis connection.

Logging:
    - Uses the centralized logging manager.
    - Logs connection attempts, successes, and failures.
"""

from typing import Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from facetime_attendance.config import settings
from facetime_attendance.managers.logging_manager import get_logger

logger = get_logger(prefix="[RedisManager]")


class RedisManager:
    """
    Manages a single Redis connection for the application.

    Attributes:
        redis_url: The Redis connection URL.
        _redis: The cached Redis connection instance.
    """

    def __init__(self, redis_url: Optional[str] = None) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self._redis: Optional[redis_async.Redis] = None

    async def get_redis(self) -> redis_async.Redis:
        """Get or create the Redis connection and verify it answers PING."""
        if self._redis is None:
            logger.info("Attempting async connection to Redis at %s", self.redis_url)
            client = redis_async.from_url(self.redis_url, decode_responses=True)
            try:
                await client.ping()
            except RedisError as conn_exc:
                logger.error("Failed to connect to Redis: %s", conn_exc, exc_info=True)
                await client.aclose()
                raise
            self._redis = client
            logger.info("Successfully connected (async) to Redis at %s", self.redis_url)
        return self._redis

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")


redis_manager = RedisManager()
