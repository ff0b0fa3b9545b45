"""
Redis client for the result cache.

Thin async wrapper around redis.asyncio with explicit connect/disconnect.
Each owner creates its own client; there is no process-wide instance.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Redis client for key-value operations.

    Usage:
        client = RedisClient("redis://redis:6379")
        await client.connect()

        await client.set("key", "value", ex=3600)
        value = await client.get("key")
    """

    def __init__(self, redis_url: str):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL
        """
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Connect to Redis and verify the connection with PING."""
        if self._connected:
            return

        logger.info(f"Connecting to Redis: {self.redis_url}")
        self._redis = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        await self._redis.ping()
        self._connected = True
        logger.info("Redis client connected")

    async def disconnect(self):
        """Disconnect from Redis"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._connected = False
            logger.info("Redis client disconnected")

    @property
    def redis(self) -> aioredis.Redis:
        """Get underlying Redis connection"""
        if not self._connected or not self._redis:
            raise RuntimeError("Redis client not connected. Call await client.connect() first.")
        return self._redis

    # === Key-Value operations ===

    async def get(self, key: str) -> Optional[str]:
        """Get value by key"""
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """
        Set key-value pair.

        Args:
            key: Key name
            value: Value to store
            ex: Expiration time in seconds (TTL)

        Returns:
            True if successful
        """
        return await self.redis.set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys. Returns number of keys deleted."""
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def exists(self, *keys: str) -> int:
        """Check if keys exist. Returns number of existing keys."""
        return await self.redis.exists(*keys)

    async def scan_iter(self, match: str) -> AsyncIterator[str]:
        """Iterate keys matching a glob pattern (SCAN, not KEYS)."""
        async for key in self.redis.scan_iter(match=match):
            yield key
