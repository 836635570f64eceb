"""
Session store configuration.

Every option has an environment variable and a default; explicit keyword
arguments win over both:

    config = SessionStoreConfig()                       # env + defaults
    config = SessionStoreConfig(autosave_interval=5)    # override

Environment variables:
- AUTOSAVE_INTERVAL: autosave period and lock staleness threshold, seconds (default: 60)
- RETRY_ATTEMPTS: attempts per remote call (default: 3)
- RETRY_DELAY: fixed delay between attempts, seconds (default: 2)
- SESSION_LOCK_KICK_MESSAGE: message shown to an entity rejected by a fresh lock
- LOAD_FAILURE_MESSAGE: message shown on any other load failure
- SHUTDOWN_TIMEOUT: deadline for the shutdown flush, seconds (default: 30)
- DATA_KEY_PREFIX / LOCK_KEY_PREFIX: remote key prefixes (default: user_ / sessionlock_)
- REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
- REDIS_ENABLED: set to "0" to use the in-memory store instead of Redis
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import ConfigError

DEFAULT_AUTOSAVE_INTERVAL = 60
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_SHUTDOWN_TIMEOUT = 30.0
DEFAULT_KICK_MESSAGE = (
    "Your data is still in use by another server. Please rejoin in a minute."
)
DEFAULT_LOAD_FAILURE_MESSAGE = "Your data could not be loaded. Please rejoin."
DEFAULT_DATA_KEY_PREFIX = "user_"
DEFAULT_LOCK_KEY_PREFIX = "sessionlock_"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_str(name: str, default: str) -> str:
    return os.getenv(name) or default


def _env_enabled(name: str) -> bool:
    return os.getenv(name, "1").lower() not in ("0", "false", "no")


@dataclass
class SessionStoreConfig:
    """Tunables for the session store, read from the environment by default."""

    autosave_interval: int = field(
        default_factory=lambda: _env_int("AUTOSAVE_INTERVAL", DEFAULT_AUTOSAVE_INTERVAL)
    )
    retry_attempts: int = field(
        default_factory=lambda: _env_int("RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)
    )
    retry_delay: float = field(
        default_factory=lambda: _env_float("RETRY_DELAY", DEFAULT_RETRY_DELAY)
    )
    kick_message: str = field(
        default_factory=lambda: _env_str("SESSION_LOCK_KICK_MESSAGE", DEFAULT_KICK_MESSAGE)
    )
    load_failure_message: str = field(
        default_factory=lambda: _env_str("LOAD_FAILURE_MESSAGE", DEFAULT_LOAD_FAILURE_MESSAGE)
    )
    shutdown_timeout: float = field(
        default_factory=lambda: _env_float("SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT)
    )
    data_key_prefix: str = field(
        default_factory=lambda: _env_str("DATA_KEY_PREFIX", DEFAULT_DATA_KEY_PREFIX)
    )
    lock_key_prefix: str = field(
        default_factory=lambda: _env_str("LOCK_KEY_PREFIX", DEFAULT_LOCK_KEY_PREFIX)
    )
    redis_url: str = field(
        default_factory=lambda: _env_str("REDIS_URL", DEFAULT_REDIS_URL)
    )
    redis_enabled: bool = field(
        default_factory=lambda: _env_enabled("REDIS_ENABLED")
    )

    def __post_init__(self):
        if self.autosave_interval <= 0:
            raise ConfigError(f"autosave_interval must be positive, got {self.autosave_interval}")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must not be negative, got {self.retry_delay}")
        if self.shutdown_timeout <= 0:
            raise ConfigError(f"shutdown_timeout must be positive, got {self.shutdown_timeout}")
        if self.data_key_prefix == self.lock_key_prefix:
            raise ConfigError("data_key_prefix and lock_key_prefix must differ")

    def data_key(self, entity_id: str) -> str:
        return f"{self.data_key_prefix}{entity_id}"

    def lock_key(self, entity_id: str) -> str:
        return f"{self.lock_key_prefix}{entity_id}"
