"""
Bounded retry for remote store calls.

Every remote access in the package goes through RetryExecutor.execute(), so
retry policy lives in exactly one place: a fixed number of attempts with a
fixed delay between them, no backoff.

Usage:
    executor = RetryExecutor(attempts=3, delay=2.0)
    result = await executor.execute(lambda: store.get("user_42"), label="load user_42")
    if result.success:
        record = result.value
    else:
        logger.warning(f"load failed: {result.error}")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .config import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY
from .errors import ExhaustedRetries
from .logging_utils import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class RetryResult:
    """Outcome of a retried operation."""
    success: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0

    def as_exception(self) -> ExhaustedRetries:
        return ExhaustedRetries(self.attempts, self.error)


class RetryExecutor:
    """Runs an async operation up to `attempts` times, sleeping `delay` between tries."""

    def __init__(
        self,
        attempts: int = DEFAULT_RETRY_ATTEMPTS,
        delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        self.attempts = attempts
        self.delay = delay
        self._sleep = sleep

    async def execute(self, operation: Operation, *, label: str = "remote call") -> RetryResult:
        """
        Call `operation` until it succeeds or the attempts run out.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per call
            label: Human-readable name for log messages

        Returns:
            RetryResult; never raises for failures of the operation itself.
            Cancellation is not caught.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.attempts + 1):
            try:
                value = await operation()
            except Exception as e:
                last_error = e
                logger.warning(f"{label} failed (attempt {attempt}/{self.attempts}): {e}")
                if attempt < self.attempts:
                    await self._sleep(self.delay)
                continue
            if attempt > 1:
                logger.debug(f"{label} succeeded on attempt {attempt}")
            return RetryResult(success=True, value=value, attempts=attempt)

        return RetryResult(success=False, error=last_error, attempts=self.attempts)
