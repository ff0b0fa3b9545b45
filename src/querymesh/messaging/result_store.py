"""
Result stores - cache of step results, keyed by "<plan id>:<step id>".

The cache mirrors the processor's in-run results and is never authoritative:
every operation is best-effort, failures are logged and a failed read is
treated as an empty result.

- RedisResultStore: JSON payloads in Redis with a TTL
- InMemoryResultStore: process-local dict with the same TTL semantics
"""

from __future__ import annotations

import copy
import json
import logging
import time
from typing import Callable, Optional, Protocol

from ..core.plan_types import Row
from .client import RedisClient

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "sql-query-result"
DEFAULT_TTL = 60 * 30  # 30 minutes


class ResultStore(Protocol):
    """Best-effort storage of step rows."""

    async def connect(self) -> None: ...

    def is_connected(self) -> bool: ...

    async def store(self, key: str, rows: list[Row]) -> bool: ...

    async def get(self, key: str) -> list[Row]: ...

    async def exists(self, key: str) -> bool: ...

    async def clear(self, prefix: str) -> int: ...

    async def disconnect(self) -> None: ...


def result_key(plan_id: str, step_id: str) -> str:
    return f"{plan_id}:{step_id}"


class RedisResultStore:
    """
    Result store backed by Redis.

    Usage:
        store = RedisResultStore("redis://localhost:6379")
        await store.connect()

        await store.store("plan-1:step_1", [{"id": 1}])
        rows = await store.get("plan-1:step_1")

        # Remove every entry of a plan
        await store.clear("plan-1")
    """

    def __init__(self, redis_url: str, prefix: str = DEFAULT_PREFIX, ttl: int = DEFAULT_TTL):
        """
        Initialize store.

        Args:
            redis_url: Redis URL
            prefix: Key prefix
            ttl: Entry lifetime in seconds
        """
        self.prefix = prefix
        self.ttl = ttl
        self.client = RedisClient(redis_url)

    def _make_key(self, key: str) -> str:
        """Build full cache key with prefix"""
        return f"{self.prefix}:{key}"

    async def connect(self) -> None:
        await self.client.connect()

    def is_connected(self) -> bool:
        return self.client.is_connected

    async def disconnect(self) -> None:
        await self.client.disconnect()

    async def store(self, key: str, rows: list[Row]) -> bool:
        """Store rows under key"""
        full_key = self._make_key(key)
        if not self.client.is_connected:
            logger.debug(f"Redis not connected, skipping store for {full_key}")
            return False
        try:
            payload = json.dumps(rows, ensure_ascii=False, default=str)
            await self.client.set(full_key, payload, ex=self.ttl)
            logger.debug(f"Stored {len(rows)} rows in {full_key} (TTL: {self.ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Result store error for {full_key}: {e}")
            return False

    async def get(self, key: str) -> list[Row]:
        """Get rows by key; [] on miss or error"""
        full_key = self._make_key(key)
        if not self.client.is_connected:
            return []
        try:
            data = await self.client.get(full_key)
            if data:
                rows = json.loads(data)
                return rows if isinstance(rows, list) else []
        except Exception as e:
            logger.error(f"Result get error for {full_key}: {e}")
        return []

    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        full_key = self._make_key(key)
        if not self.client.is_connected:
            return False
        try:
            return bool(await self.client.exists(full_key))
        except Exception as e:
            logger.error(f"Result exists check error for {full_key}: {e}")
            return False

    async def clear(self, prefix: str) -> int:
        """
        Delete all entries under "<prefix>:".

        Uses SCAN, which can be slow on large datasets.

        Returns:
            Number of keys deleted
        """
        pattern = self._make_key(f"{prefix}:*")
        if not self.client.is_connected:
            return 0
        try:
            count = 0
            async for key in self.client.scan_iter(match=pattern):
                count += await self.client.delete(key)
            logger.info(f"Cleared {count} keys matching {pattern}")
            return count
        except Exception as e:
            logger.error(f"Result clear error for {pattern}: {e}")
            return 0


class InMemoryResultStore:
    """
    Process-local result store.

    Used when no Redis URL is configured, and in tests. Rows are copied on
    the way in and out so callers never share mutable state with the store.
    """

    def __init__(self, ttl: int = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, list[Row]]] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    def is_connected(self) -> bool:
        return self._connected

    async def disconnect(self) -> None:
        self._connected = False

    def _live(self, key: str) -> Optional[list[Row]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, rows = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return rows

    async def store(self, key: str, rows: list[Row]) -> bool:
        self._entries[key] = (self._clock() + self.ttl, copy.deepcopy(rows))
        return True

    async def get(self, key: str) -> list[Row]:
        rows = self._live(key)
        return copy.deepcopy(rows) if rows is not None else []

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def clear(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(f"{prefix}:")]
        for key in keys:
            del self._entries[key]
        return len(keys)
