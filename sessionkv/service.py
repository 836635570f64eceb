"""
Session data service: the public face of the package.

One SessionDataService per process owns the cache, the session locks, the
autosave loop and the shutdown flush. Collaborators (game logic, leaderboards,
UI) get the instance passed in and use only:

    record = await service.get_data(entity_id, template)
    service.update_data(entity_id, lambda r: {**r, "score": r["score"] + 1})
    sub = service.on_data_updated(entity_id, callback)

The host wires its lifecycle in:

    await service.entity_departed(entity_id)    # on leave
    await service.shutdown()                    # on process exit

and supplies an `evict(entity_id, message)` hook (sync or async) used to
reject an entity whose data could not be loaded.

Usage:
    async with SessionDataService(host=server) as service:
        await service.serve_forever()   # until SIGINT/SIGTERM
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from .autosave import AutosaveScheduler
from .cache import EntityCache, Record, Subscription, Transform, UpdateCallback
from .config import SessionStoreConfig
from .loader import DataLoader, LoadError
from .logging_utils import get_logger
from .retry import RetryExecutor
from .session_lock import SessionLockManager
from .shutdown import FlushReport, ShutdownCoordinator
from .store.redis_client import close_redis
from .store.remote_store import RedisStore, RemoteStore, open_store

logger = get_logger(__name__)


class Host(Protocol):
    """What the service needs from the hosting application."""

    def evict(self, entity_id: str, message: str) -> Any:
        ...


class SessionDataService:
    """Session-locked, cached access to per-entity records."""

    def __init__(
        self,
        store: Optional[RemoteStore] = None,
        config: Optional[SessionStoreConfig] = None,
        host: Optional[Host] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or SessionStoreConfig()
        self._owns_store = store is None
        self.store = store if store is not None else open_store(self.config)
        self.host = host

        self.executor = RetryExecutor(
            attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
            sleep=sleep,
        )
        self.cache = EntityCache()
        self.locks = SessionLockManager(self.store, self.executor, self.config, clock=clock)
        self.loader = DataLoader(self.store, self.executor, self.locks, self.cache, self.config)
        self.autosave = AutosaveScheduler(
            self.store, self.executor, self.locks, self.cache, self.config, sleep=sleep
        )
        self.coordinator = ShutdownCoordinator(
            self.cache, self.save, timeout=self.config.shutdown_timeout
        )
        self.closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the autosave loop. Call once the event loop is running."""
        if self.closed:
            raise RuntimeError("SessionDataService is shut down")
        self.autosave.start()

    async def __aenter__(self) -> "SessionDataService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def serve_forever(self) -> FlushReport:
        """Run until SIGINT/SIGTERM, then shut down."""
        self.start()
        self.coordinator.install_signal_handlers()
        try:
            await self.coordinator.wait_for_shutdown_signal()
        finally:
            self.coordinator.remove_signal_handlers()
        return await self.shutdown()

    async def shutdown(self, timeout: Optional[float] = None) -> FlushReport:
        """
        Stop autosave, flush every cached entity, release their locks.

        Idempotent; a second call returns an empty report.
        """
        if self.closed:
            return FlushReport()
        self.closed = True

        loop = asyncio.get_running_loop()
        deadline = self.config.shutdown_timeout if timeout is None else timeout
        started = loop.time()

        self.loader.close()
        await self.autosave.stop()
        await self.loader.drain(timeout=deadline)

        remaining = max(deadline - (loop.time() - started), 0)
        report = await self.coordinator.flush_all(timeout=remaining)

        remaining = deadline - (loop.time() - started)
        if report.saved and remaining > 0:
            releases = [asyncio.ensure_future(self.locks.release(e)) for e in report.saved]
            _, pending = await asyncio.wait(releases, timeout=remaining)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Shutdown: {len(pending)} lock release(s) did not finish")

        for entity_id in self.cache.entity_ids():
            self.cache.remove(entity_id)

        if self._owns_store and isinstance(self.store, RedisStore):
            await close_redis()
        return report

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_data(self, entity_id: str, template: Record) -> Optional[Record]:
        """
        Return the entity's record, loading it on first access.

        On a failed load the host evicts the entity (with the kick message
        for lock contention, the generic failure message otherwise) and None
        is returned.
        """
        cached = self.cache.get(entity_id)
        if cached is not None:
            return cached

        if self.closed:
            logger.warning(f"get_data({entity_id}) after shutdown")
            await self._evict(entity_id, self.config.load_failure_message)
            return None

        result = await self.loader.load(entity_id, template)
        if result.ok:
            return result.record

        if result.error is LoadError.LOCK_CONTENTION:
            message = self.config.kick_message
        else:
            message = self.config.load_failure_message
        logger.warning(f"Load failed for {entity_id} ({result.error.value}): {result.reason}")
        await self._evict(entity_id, message)
        return None

    def update_data(self, entity_id: str, transform: Transform) -> Optional[Record]:
        return self.cache.update(entity_id, transform)

    def on_data_updated(self, entity_id: str, callback: UpdateCallback) -> Subscription:
        return self.cache.subscribe(entity_id, callback)

    async def save(self, entity_id: str) -> bool:
        """Re-stamp the lock and persist the cached record (the shared save routine)."""
        return await self.autosave.save_entity(entity_id)

    async def entity_departed(self, entity_id: str) -> bool:
        """
        Final save, lock release and eviction for a departing entity.

        The lock is released only if the save went through; otherwise it is
        left to go stale on its own.

        Returns:
            True if the final save succeeded
        """
        pending = self.loader.in_flight(entity_id)
        if pending is not None:
            await asyncio.shield(pending)

        entry = self.cache.entry(entity_id)
        if entry is None:
            return False
        # Keeps autosave from re-stamping the lock once it has been released
        entry.departing = True

        saved = await self.autosave.save_entity(entity_id, final=True)
        if saved:
            await self.locks.release(entity_id)
        else:
            logger.warning(f"Final save failed for departing {entity_id}; lock left to expire")
        self.cache.remove(entity_id)
        return saved

    def health_check(self) -> Dict[str, Any]:
        report = self.autosave.last_report
        return {
            "status": "closed" if self.closed else "running",
            "backend": "redis" if isinstance(self.store, RedisStore) else type(self.store).__name__,
            "cached_entities": len(self.cache),
            "locked_entities": len(self.cache.locked_entity_ids()),
            "autosave": {
                "running": self.autosave.running,
                "interval_seconds": self.config.autosave_interval,
                "cycles": self.autosave.cycles,
                "last_cycle": report.to_dict() if report else None,
            },
        }

    # ------------------------------------------------------------------

    async def _evict(self, entity_id: str, message: str) -> None:
        if self.host is None:
            logger.warning(f"No host to evict {entity_id}: {message}")
            return
        try:
            outcome = self.host.evict(entity_id, message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"Host failed to evict {entity_id}")
