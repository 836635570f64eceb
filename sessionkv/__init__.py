"""
Session-locked entity cache over a remote key-value store.

Provides:
- Session locks: only one server process owns an entity's record at a time
- Entity cache: reads and writes hit memory, not the remote store
- Bounded retry around every remote call
- Autosave: periodic persistence that doubles as the lock heartbeat
- Shutdown flush: every cached record saved concurrently before exit

Usage:
    from sessionkv import SessionDataService

    async with SessionDataService(host=server) as service:
        record = await service.get_data("42", {"score": 0})
        service.update_data("42", lambda r: {**r, "score": r["score"] + 10})
"""

from .autosave import AutosaveScheduler, SweepReport
from .cache import CacheEntry, EntityCache, Subscription, UpdateNotifier
from .config import SessionStoreConfig
from .errors import (
    ConfigError,
    ExhaustedRetries,
    IndeterminateLockState,
    LockContention,
    SessionStoreError,
    TransientRemoteError,
)
from .loader import DataLoader, LoadError, LoadResult
from .retry import RetryExecutor, RetryResult
from .service import SessionDataService
from .session_lock import LockDecision, LockInfo, LockStatus, SessionLockManager
from .shutdown import FlushReport, ShutdownCoordinator
from .store import MemoryStore, RedisStore, RemoteStore, open_store

__version__ = "1.0.0"

__all__ = [
    "SessionDataService",
    "SessionStoreConfig",
    "RetryExecutor",
    "RetryResult",
    "SessionLockManager",
    "LockDecision",
    "LockInfo",
    "LockStatus",
    "EntityCache",
    "CacheEntry",
    "UpdateNotifier",
    "Subscription",
    "DataLoader",
    "LoadError",
    "LoadResult",
    "AutosaveScheduler",
    "SweepReport",
    "ShutdownCoordinator",
    "FlushReport",
    "RemoteStore",
    "RedisStore",
    "MemoryStore",
    "open_store",
    "SessionStoreError",
    "ConfigError",
    "TransientRemoteError",
    "ExhaustedRetries",
    "LockContention",
    "IndeterminateLockState",
]
