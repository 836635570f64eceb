"""
Redis client with lazy connection.

Connection management:
- Lazy initialization (connects on first use)
- Auto-reconnect on connection loss
- Availability is remembered for health checks but never cached as a
  permanent verdict: the next call tries to connect again, so the retry
  layer above can ride out a Redis restart

Environment variables:
- REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
- REDIS_ENABLED: Set to "0" to disable Redis entirely
"""

from __future__ import annotations

import os
from typing import Optional

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from ..config import DEFAULT_REDIS_URL
from ..logging_utils import get_logger

logger = get_logger(__name__)

_redis_client: Optional[redis_asyncio.Redis] = None
_redis_url: Optional[str] = None
_redis_available: Optional[bool] = None


def _redis_disabled() -> bool:
    return os.getenv("REDIS_ENABLED", "1").lower() in ("0", "false", "no")


async def get_redis(url: Optional[str] = None) -> Optional[redis_asyncio.Redis]:
    """
    Get async Redis client instance.

    Args:
        url: Connection URL; defaults to REDIS_URL

    Returns:
        Redis client if reachable, None if Redis is disabled or unreachable.
    """
    global _redis_client, _redis_url, _redis_available

    if _redis_disabled():
        return None

    redis_url = url or os.getenv("REDIS_URL", DEFAULT_REDIS_URL)

    # A different URL means a different server; drop the old client
    if _redis_client is not None and redis_url != _redis_url:
        await close_redis()

    if _redis_client is not None:
        try:
            # Quick health check
            await _redis_client.ping()
            return _redis_client
        except (RedisError, OSError) as e:
            logger.warning(f"Redis connection lost ({redis_url}): {e} - reconnecting")
            await close_redis()

    try:
        client = redis_asyncio.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
        )
        await client.ping()
    except (RedisError, OSError) as e:
        if _redis_available is not False:
            logger.warning(f"Redis unavailable ({redis_url}): {e}")
        _redis_available = False
        return None

    _redis_client = client
    _redis_url = redis_url
    _redis_available = True
    logger.info(f"Redis connected: {redis_url}")
    return _redis_client


def is_redis_available() -> bool:
    """
    Check if Redis is available (non-blocking).

    Returns the status of the last connection attempt. Optimistically True
    before the first attempt.
    """
    if _redis_disabled():
        return False
    if _redis_available is not None:
        return _redis_available
    return True


async def close_redis() -> None:
    """Close Redis connection (call on shutdown)."""
    global _redis_client, _redis_url
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Ignoring error while closing Redis: {e}")
        _redis_client = None
        _redis_url = None


def reset_redis_state() -> None:
    """Reset Redis state (for testing)."""
    global _redis_client, _redis_url, _redis_available
    _redis_client = None
    _redis_url = None
    _redis_available = None
