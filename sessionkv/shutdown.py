"""
Final flush on orderly shutdown.

One save task per cached entity, all joined under a single deadline. This is
best effort: entities still saving when the deadline passes are reported as
timed out and lost back to their last autosave.
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field
from typing import Any, Callable, Awaitable, Dict, List, Optional

from .cache import EntityCache
from .logging_utils import get_logger

logger = get_logger(__name__)

SaveRoutine = Callable[[str], Awaitable[bool]]

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class FlushReport:
    saved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.timed_out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saved": len(self.saved),
            "failed": list(self.failed),
            "timed_out": list(self.timed_out),
        }


class ShutdownCoordinator:
    """Flushes the whole cache concurrently and waits, up to a deadline."""

    def __init__(self, cache: EntityCache, save: SaveRoutine, timeout: float):
        self.cache = cache
        self.save = save
        self.timeout = timeout
        self._stop_requested: Optional[asyncio.Event] = None
        self._installed_signals: List[int] = []

    async def _save_one(self, entity_id: str) -> bool:
        try:
            return await self.save(entity_id)
        except Exception:
            logger.exception(f"Final save of {entity_id} raised")
            return False

    async def flush_all(self, timeout: Optional[float] = None) -> FlushReport:
        """
        Save every cached entity concurrently.

        Args:
            timeout: Deadline in seconds (default: configured shutdown timeout)

        Returns:
            FlushReport with saved / failed / timed-out entity ids
        """
        deadline = self.timeout if timeout is None else timeout
        report = FlushReport()
        entity_ids = self.cache.entity_ids()
        if not entity_ids:
            logger.info("Shutdown flush: nothing cached")
            return report

        logger.info(f"Shutdown flush: saving {len(entity_ids)} entities (deadline {deadline}s)")
        tasks = {
            asyncio.ensure_future(self._save_one(entity_id)): entity_id
            for entity_id in entity_ids
        }
        done, pending = await asyncio.wait(tasks, timeout=deadline)

        for task in done:
            (report.saved if task.result() else report.failed).append(tasks[task])
        for task in pending:
            task.cancel()
            report.timed_out.append(tasks[task])
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if report.complete:
            logger.info(f"Shutdown flush complete: {len(report.saved)} saved")
        else:
            logger.error(
                f"Shutdown flush incomplete: {len(report.saved)} saved, "
                f"{len(report.failed)} failed, {len(report.timed_out)} timed out"
            )
        return report

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        """
        Turn SIGINT/SIGTERM into a shutdown request (see wait_for_shutdown_signal).

        Returns:
            False where the loop cannot handle signals (e.g. Windows)
        """
        loop = loop or asyncio.get_running_loop()
        if self._stop_requested is None:
            self._stop_requested = asyncio.Event()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot install handler for {sig!r}: {e}")
                return False
            self._installed_signals.append(sig)
        return True

    def remove_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def request_shutdown(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            logger.info(f"Received signal {signum}, shutting down gracefully...")
        if self._stop_requested is None:
            self._stop_requested = asyncio.Event()
        self._stop_requested.set()

    async def wait_for_shutdown_signal(self) -> None:
        if self._stop_requested is None:
            self._stop_requested = asyncio.Event()
        await self._stop_requested.wait()
