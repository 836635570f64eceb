"""
Entity loading: session lock first, then the record, then the cache.

An entry becomes visible in the cache only after the whole sequence
succeeded. Any failure leaves the cache untouched and is reported back as a
LoadResult so the caller can evict the entity instead of retrying forever.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .cache import EntityCache, Record
from .config import SessionStoreConfig
from .errors import IndeterminateLockState, LockContention, SessionStoreError
from .logging_utils import get_logger
from .retry import RetryExecutor, RetryResult
from .session_lock import LockStatus, SessionLockManager
from .store.remote_store import RemoteStore

logger = get_logger(__name__)


class LoadError(str, Enum):
    LOCK_CONTENTION = "lock_contention"
    INDETERMINATE_LOCK = "indeterminate_lock"
    LOAD_FAILED = "load_failed"


@dataclass
class LoadResult:
    record: Optional[Record] = None
    error: Optional[LoadError] = None
    reason: Optional[str] = None
    retry: Optional[RetryResult] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_exception(self, entity_id: str) -> Optional[SessionStoreError]:
        """The failure as an exception, for callers that prefer raising."""
        if self.error is LoadError.LOCK_CONTENTION:
            return LockContention(entity_id, self.reason or "")
        if self.error is LoadError.INDETERMINATE_LOCK:
            return IndeterminateLockState(entity_id)
        if self.error is LoadError.LOAD_FAILED:
            if self.retry is not None:
                return self.retry.as_exception()
            return SessionStoreError(self.reason or "could not load data")
        return None


class DataLoader:
    """Populates the EntityCache for arriving entities."""

    def __init__(
        self,
        store: RemoteStore,
        executor: RetryExecutor,
        locks: SessionLockManager,
        cache: EntityCache,
        config: SessionStoreConfig,
    ):
        self.store = store
        self.executor = executor
        self.locks = locks
        self.cache = cache
        self.config = config
        self._in_flight: Dict[str, asyncio.Task] = {}
        self.closed = False

    def in_flight(self, entity_id: str) -> Optional[asyncio.Task]:
        """The load task currently running for `entity_id`, if any."""
        return self._in_flight.get(entity_id)

    def close(self) -> None:
        """Stop installing entries; loads still running give their lock back."""
        self.closed = True

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight loads to finish.

        Returns:
            Number of loads still running when the timeout expired
        """
        tasks = list(self._in_flight.values())
        if not tasks:
            return 0
        logger.info(f"Waiting for {len(tasks)} in-flight load(s)")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} load(s) still running after {timeout}s")
        return len(pending)

    async def load(self, entity_id: str, template: Record) -> LoadResult:
        """
        Load `entity_id` into the cache.

        Concurrent calls for the same entity share one load, so the lock is
        never acquired twice by this process. A caller that gets cancelled
        does not cancel the shared load.
        """
        cached = self.cache.get(entity_id)
        if cached is not None:
            return LoadResult(record=cached)

        task = self._in_flight.get(entity_id)
        if task is None:
            task = asyncio.ensure_future(self._load(entity_id, template))
            self._in_flight[entity_id] = task
            task.add_done_callback(lambda _t: self._in_flight.pop(entity_id, None))
        else:
            logger.debug(f"Joining in-flight load for {entity_id}")
        return await asyncio.shield(task)

    async def _abandon(self, entity_id: str) -> LoadResult:
        logger.info(f"Load of {entity_id} abandoned: shutting down")
        await self.locks.release(entity_id)
        return LoadResult(error=LoadError.LOAD_FAILED, reason="shutting down")

    async def _load(self, entity_id: str, template: Record) -> LoadResult:
        decision = await self.locks.check_and_acquire(entity_id)
        if decision.status is LockStatus.REJECTED:
            return LoadResult(error=LoadError.LOCK_CONTENTION, reason=decision.reason)
        if decision.status is LockStatus.INDETERMINATE:
            return LoadResult(error=LoadError.INDETERMINATE_LOCK, reason=decision.reason)
        if self.closed:
            return await self._abandon(entity_id)

        key = self.config.data_key(entity_id)
        result = await self.executor.execute(
            lambda: self.store.get(key), label=f"load {key}"
        )
        if not result.success:
            logger.warning(f"Could not load data for {entity_id}: {result.error}")
            # Our fresh stamp would otherwise lock the entity out of its own rejoin
            await self.locks.release(entity_id)
            return LoadResult(
                error=LoadError.LOAD_FAILED, reason="could not load data", retry=result
            )
        if self.closed:
            return await self._abandon(entity_id)

        if result.value is None:
            logger.info(f"No saved data for {entity_id}; starting from template")
            record = copy.deepcopy(template)
        else:
            record = result.value

        self.cache.install(entity_id, record, locked=True)
        return LoadResult(record=record)
