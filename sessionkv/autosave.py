"""
Periodic autosave.

Every AUTOSAVE_INTERVAL seconds, each locked cache entry gets its session lock
re-stamped and its record written back. The re-stamp is the heartbeat other
processes look at: as long as this loop runs, our locks stay fresh.

save_entity() is the one save routine in the package; entity departure and
the shutdown flush reuse it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .cache import EntityCache
from .config import SessionStoreConfig
from .logging_utils import get_logger
from .retry import RetryExecutor
from .session_lock import SessionLockManager
from .store.remote_store import RemoteStore

logger = get_logger(__name__)


@dataclass
class SweepReport:
    saved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"saved": len(self.saved), "failed": list(self.failed)}


class AutosaveScheduler:
    """Background task persisting every locked entry once per interval."""

    def __init__(
        self,
        store: RemoteStore,
        executor: RetryExecutor,
        locks: SessionLockManager,
        cache: EntityCache,
        config: SessionStoreConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.executor = executor
        self.locks = locks
        self.cache = cache
        self.config = config
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _may_save(self, entity_id: str, final: bool) -> bool:
        entry = self.cache.entry(entity_id)
        if entry is None:
            logger.debug(f"Save skipped for {entity_id}: not cached")
            return False
        if not entry.locked:
            logger.warning(f"Save skipped for {entity_id}: session lock not held")
            return False
        if entry.departing and not final:
            logger.debug(f"Save skipped for {entity_id}: departing")
            return False
        return True

    async def save_entity(self, entity_id: str, final: bool = False) -> bool:
        """
        Re-stamp the session lock and persist the cached record.

        A failed re-stamp is logged and does not stop the record write.
        Entries that are departing are left to the departure's own save
        (`final=True`); the entry is re-checked after the re-stamp so a
        departure that started meanwhile wins.

        Returns:
            True if the record was written
        """
        if not self._may_save(entity_id, final):
            return False
        await self.locks.refresh(entity_id)
        if not self._may_save(entity_id, final):
            return False

        record = self.cache.get(entity_id)
        key = self.config.data_key(entity_id)
        result = await self.executor.execute(
            lambda: self.store.set(key, record), label=f"save {key}"
        )
        if not result.success:
            logger.warning(f"Could not save {entity_id}: {result.error}")
            return False
        logger.debug(f"Saved {entity_id}")
        return True

    async def sweep(self) -> SweepReport:
        """Save every locked entry, one at a time; failures are isolated per entity."""
        report = SweepReport()
        for entity_id in self.cache.locked_entity_ids():
            try:
                saved = await self.save_entity(entity_id)
            except Exception:
                logger.exception(f"Autosave of {entity_id} raised")
                saved = False
            (report.saved if saved else report.failed).append(entity_id)

        self.cycles += 1
        self.last_report = report
        if report.failed:
            logger.warning(
                f"Autosave cycle {self.cycles}: saved {len(report.saved)}, "
                f"failed {len(report.failed)} ({', '.join(report.failed)})"
            )
        else:
            logger.debug(f"Autosave cycle {self.cycles}: saved {len(report.saved)}")
        return report

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.autosave_interval
        delay = interval
        while True:
            try:
                await self._sleep(delay)
                started = loop.time()
                await self.sweep()
                # Start-to-start cadence: a slow sweep must not stretch the heartbeat
                delay = max(interval - (loop.time() - started), 0)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Keep the heartbeat alive whatever happens in one cycle
                logger.error(f"Autosave cycle error: {e}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Autosave started (every {self.config.autosave_interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Autosave stopped")
