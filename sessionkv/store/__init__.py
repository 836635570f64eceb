"""
Remote store backends.

Provides:
- RedisStore: records and lock stamps in Redis (multi-server deployments)
- MemoryStore: in-process dict (single server, tests)

Usage:
    from sessionkv.store import open_store

    store = open_store(config)
    await store.set("user_42", {"score": 0})
    record = await store.get("user_42")
"""

from .redis_client import get_redis, is_redis_available, close_redis, reset_redis_state
from .remote_store import RemoteStore, RedisStore, MemoryStore, open_store

__all__ = [
    "get_redis",
    "is_redis_available",
    "close_redis",
    "reset_redis_state",
    "RemoteStore",
    "RedisStore",
    "MemoryStore",
    "open_store",
]
