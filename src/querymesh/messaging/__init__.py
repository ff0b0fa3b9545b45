"""
Messaging module - Redis client and step result stores.

Usage:
    from querymesh.messaging import RedisResultStore

    store = RedisResultStore("redis://localhost:6379")
    await store.connect()
"""

from .client import RedisClient
from .result_store import (
    DEFAULT_PREFIX,
    DEFAULT_TTL,
    InMemoryResultStore,
    RedisResultStore,
    ResultStore,
    result_key,
)

__all__ = [
    "RedisClient",
    "ResultStore",
    "RedisResultStore",
    "InMemoryResultStore",
    "result_key",
    "DEFAULT_PREFIX",
    "DEFAULT_TTL",
]
