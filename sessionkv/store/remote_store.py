"""
Remote key-value store adapters.

The session layer only ever needs two operations, get(key) and set(key, value),
both asynchronous and both allowed to fail. Adapters raise
TransientRemoteError for anything the retry layer should try again.

Values are plain JSON-compatible data (records are dicts, lock stamps are
ints). Redis stores them JSON-encoded; the in-memory store deep-copies them
so callers never share objects with the store.
"""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from redis.exceptions import RedisError

from ..config import SessionStoreConfig
from ..errors import TransientRemoteError
from ..logging_utils import get_logger
from .redis_client import get_redis

logger = get_logger(__name__)


@runtime_checkable
class RemoteStore(Protocol):
    """Minimal async key-value interface consumed by the session layer."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


class RedisStore:
    """
    RemoteStore backed by Redis.

    Pass `client` to use an existing connection (e.g. fakeredis in tests);
    otherwise the shared lazy client from redis_client.get_redis() is used.
    """

    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None):
        self.url = url
        self._client = client

    async def _redis(self, operation: str, key: str):
        if self._client is not None:
            return self._client
        client = await get_redis(self.url)
        if client is None:
            raise TransientRemoteError(operation, key, ConnectionError("Redis unavailable"))
        return client

    async def get(self, key: str) -> Optional[Any]:
        client = await self._redis("get", key)
        try:
            raw = await client.get(key)
        except (RedisError, OSError) as e:
            raise TransientRemoteError("get", key, e) from e
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        client = await self._redis("set", key)
        try:
            await client.set(key, payload)
        except (RedisError, OSError) as e:
            raise TransientRemoteError("set", key, e) from e

    async def ping(self) -> bool:
        try:
            client = await self._redis("ping", "")
            return bool(await client.ping())
        except (TransientRemoteError, RedisError, OSError) as e:
            logger.debug(f"Redis ping failed: {e}")
            return False


class MemoryStore:
    """
    In-process RemoteStore.

    Used when Redis is disabled (single-process deployments) and by tests.
    Several services sharing one MemoryStore behave like several processes
    sharing one Redis.

    Failure injection:
        store.fail_next(2)          # next two calls raise TransientRemoteError
        store.fail_next(1, "set")   # next set() fails, get() unaffected
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.data: Dict[str, Any] = {}
        self.calls = {"get": 0, "set": 0}
        self._failures = {"get": 0, "set": 0}

    def fail_next(self, count: int, operation: Optional[str] = None) -> None:
        """Make the next `count` calls (of `operation`, or of any kind) fail."""
        for op in ([operation] if operation else ["get", "set"]):
            self._failures[op] += count

    def _maybe_fail(self, operation: str, key: str) -> None:
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            raise TransientRemoteError(operation, key, ConnectionError("injected failure"))

    async def get(self, key: str) -> Optional[Any]:
        self.calls["get"] += 1
        # Every remote call is a suspension point, even with zero latency
        await asyncio.sleep(self.latency)
        self._maybe_fail("get", key)
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self.calls["set"] += 1
        await asyncio.sleep(self.latency)
        self._maybe_fail("set", key)
        self.data[key] = copy.deepcopy(value)

    async def ping(self) -> bool:
        return True


def open_store(config: SessionStoreConfig) -> RemoteStore:
    """Pick the store backend for this process."""
    if config.redis_enabled:
        logger.info(f"Using Redis store: {config.redis_url}")
        return RedisStore(config.redis_url)
    logger.warning("Redis disabled - using in-memory store; session locks are process-local")
    return MemoryStore()
