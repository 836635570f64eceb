"""
Session locking across uncoordinated server processes.

A session lock is nothing more than a timestamp stored remotely under
`sessionlock_<entity_id>`. Whoever stamped it last owns the entity for as long
as the stamp stays fresh. The owning process re-stamps it on every autosave,
so a stamp older than one autosave interval means the owner is gone and the
lock may be taken over.

Worst case, this bounds both data loss and lockout to one autosave interval.

There is no compare-and-set: two processes that read a stale lock in the same
instant can both be granted. The remote store only offers get/set, and the
window is a single round trip.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .config import SessionStoreConfig
from .logging_utils import get_logger
from .retry import RetryExecutor
from .store.remote_store import RemoteStore

logger = get_logger(__name__)

# Stamp written on release; always older than any staleness threshold
RELEASED_STAMP = 0


class LockStatus(str, Enum):
    GRANTED = "granted"
    REJECTED = "rejected"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class LockDecision:
    """Result of check_and_acquire."""
    status: LockStatus
    reason: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.status is LockStatus.GRANTED

    @classmethod
    def grant(cls) -> "LockDecision":
        return cls(LockStatus.GRANTED)

    @classmethod
    def reject(cls, reason: str) -> "LockDecision":
        return cls(LockStatus.REJECTED, reason)

    @classmethod
    def indeterminate(cls, reason: str) -> "LockDecision":
        return cls(LockStatus.INDETERMINATE, reason)


@dataclass(frozen=True)
class LockInfo:
    """Point-in-time view of a remote lock, for operators."""
    entity_id: str
    stamp: int
    age: float
    stale: bool

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "stamp": self.stamp,
            "age_seconds": round(self.age, 1),
            "stale": self.stale,
        }


def _parse_stamp(value: Any) -> Optional[int]:
    # bool is an int subclass; a True stamp is garbage, not second 1
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


class SessionLockManager:
    """
    Acquires, refreshes and releases per-entity session locks.

    All remote access goes through the RetryExecutor. The clock is injectable
    so staleness boundaries can be tested without sleeping.
    """

    def __init__(
        self,
        store: RemoteStore,
        executor: RetryExecutor,
        config: SessionStoreConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.executor = executor
        self.config = config
        self.clock = clock

    def _now(self) -> int:
        return int(self.clock())

    def is_stale(self, stamp: Optional[int]) -> bool:
        if stamp is None:
            return True
        return self._now() - stamp >= self.config.autosave_interval

    async def _read_stamp(self, entity_id: str):
        key = self.config.lock_key(entity_id)
        result = await self.executor.execute(
            lambda: self.store.get(key), label=f"read {key}"
        )
        if not result.success:
            return result, None
        stamp = _parse_stamp(result.value)
        if result.value is not None and stamp is None:
            logger.warning(f"Ignoring unreadable session lock {key}: {result.value!r}")
        return result, stamp

    async def _write_stamp(self, entity_id: str, stamp: int) -> bool:
        key = self.config.lock_key(entity_id)
        result = await self.executor.execute(
            lambda: self.store.set(key, stamp), label=f"write {key}"
        )
        if not result.success:
            logger.warning(f"Could not write session lock {key}: {result.error}")
        return result.success

    async def check_and_acquire(self, entity_id: str) -> LockDecision:
        """
        Take the session lock for `entity_id` unless another process holds a
        fresh one.

        A failed stamp write after a successful read still grants: the data
        read that follows is the real gate, and the next autosave re-stamps.
        """
        result, stamp = await self._read_stamp(entity_id)
        if not result.success:
            logger.warning(f"Session lock check failed for {entity_id}: {result.error}")
            return LockDecision.indeterminate("could not verify session lock")

        if not self.is_stale(stamp):
            logger.info(
                f"Session lock for {entity_id} is held elsewhere "
                f"(stamped {self._now() - stamp}s ago)"
            )
            return LockDecision.reject(self.config.kick_message)

        if stamp is not None and stamp != RELEASED_STAMP:
            logger.info(f"Taking over stale session lock for {entity_id}")
        await self._write_stamp(entity_id, self._now())
        logger.debug(f"Session lock granted: {entity_id}")
        return LockDecision.grant()

    async def refresh(self, entity_id: str) -> bool:
        """Re-stamp the lock with the current time (autosave heartbeat)."""
        return await self._write_stamp(entity_id, self._now())

    async def release(self, entity_id: str) -> bool:
        """Mark the lock stale so another process may take the entity right away."""
        released = await self._write_stamp(entity_id, RELEASED_STAMP)
        if released:
            logger.debug(f"Session lock released: {entity_id}")
        return released

    async def inspect(self, entity_id: str) -> Optional[LockInfo]:
        """
        Read the remote lock without touching it.

        Returns None if the lock has never been written or cannot be parsed.
        Raises ExhaustedRetries if the store cannot be reached.
        """
        result, stamp = await self._read_stamp(entity_id)
        if not result.success:
            raise result.as_exception()
        if stamp is None:
            return None
        return LockInfo(
            entity_id=entity_id,
            stamp=stamp,
            age=self.clock() - stamp,
            stale=self.is_stale(stamp),
        )
