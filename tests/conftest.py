"""
Pytest configuration and shared fixtures for sessionkv tests.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sessionkv.config import SessionStoreConfig
from sessionkv.errors import TransientRemoteError
from sessionkv.retry import RetryExecutor
from sessionkv.service import SessionDataService
from sessionkv.session_lock import SessionLockManager
from sessionkv.store.remote_store import MemoryStore


T0 = 1_700_000_000


class FakeClock:
    """Settable wall clock; call it like time.time."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and only yields."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class KeyFailingStore(MemoryStore):
    """MemoryStore whose writes to selected keys always fail."""

    def __init__(self, fail_keys=(), **kwargs):
        super().__init__(**kwargs)
        self.fail_keys = set(fail_keys)

    async def set(self, key, value):
        if key in self.fail_keys:
            self.calls["set"] += 1
            raise TransientRemoteError("set", key, ConnectionError("key is poisoned"))
        await super().set(key, value)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of config defaults."""
    for name in (
        "AUTOSAVE_INTERVAL", "RETRY_ATTEMPTS", "RETRY_DELAY",
        "SESSION_LOCK_KICK_MESSAGE", "LOAD_FAILURE_MESSAGE", "SHUTDOWN_TIMEOUT",
        "DATA_KEY_PREFIX", "LOCK_KEY_PREFIX", "REDIS_URL", "REDIS_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return SessionStoreConfig(
        autosave_interval=60,
        retry_attempts=3,
        retry_delay=0,
        shutdown_timeout=5,
        kick_message="Data in use elsewhere",
        load_failure_message="Could not load",
        redis_enabled=False,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def executor(config, sleeper):
    return RetryExecutor(attempts=config.retry_attempts, delay=config.retry_delay, sleep=sleeper)


@pytest.fixture
def locks(store, executor, config, clock):
    return SessionLockManager(store, executor, config, clock=clock)


@pytest.fixture
def host():
    host = MagicMock()
    host.evict = MagicMock(return_value=None)
    return host


@pytest.fixture
def make_service(config, store, clock, host, sleeper):
    """Build a SessionDataService; several services sharing a store act as several processes."""

    def _make(**overrides):
        kwargs = dict(store=store, config=config, host=host, clock=clock, sleep=sleeper)
        kwargs.update(overrides)
        return SessionDataService(**kwargs)

    return _make
