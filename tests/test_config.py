"""
Tests for sessionkv/config.py - environment-driven configuration.
"""

from unittest.mock import patch

import pytest

from sessionkv.config import (
    DEFAULT_KICK_MESSAGE,
    SessionStoreConfig,
)
from sessionkv.errors import ConfigError


class TestSessionStoreConfig:

    def test_default_config(self):
        with patch.dict("os.environ", {}, clear=True):
            config = SessionStoreConfig()
        assert config.autosave_interval == 60
        assert config.retry_attempts == 3
        assert config.retry_delay == 2.0
        assert config.kick_message == DEFAULT_KICK_MESSAGE
        assert config.shutdown_timeout == 30.0
        assert config.data_key_prefix == "user_"
        assert config.lock_key_prefix == "sessionlock_"
        assert config.redis_url == "redis://localhost:6379/0"
        assert config.redis_enabled is True

    def test_config_from_env(self):
        env = {
            "AUTOSAVE_INTERVAL": "30",
            "RETRY_ATTEMPTS": "5",
            "RETRY_DELAY": "0.5",
            "SESSION_LOCK_KICK_MESSAGE": "Try again later",
            "SHUTDOWN_TIMEOUT": "10",
            "REDIS_URL": "redis://custom:6380/1",
            "REDIS_ENABLED": "0",
        }
        with patch.dict("os.environ", env, clear=True):
            config = SessionStoreConfig()
        assert config.autosave_interval == 30
        assert config.retry_attempts == 5
        assert config.retry_delay == 0.5
        assert config.kick_message == "Try again later"
        assert config.shutdown_timeout == 10.0
        assert config.redis_url == "redis://custom:6380/1"
        assert config.redis_enabled is False

    def test_kwargs_override_env(self):
        with patch.dict("os.environ", {"AUTOSAVE_INTERVAL": "30"}, clear=True):
            config = SessionStoreConfig(autosave_interval=5)
        assert config.autosave_interval == 5

    def test_config_disabled_variants(self):
        for val in ("0", "false", "no", "False", "NO"):
            with patch.dict("os.environ", {"REDIS_ENABLED": val}, clear=True):
                config = SessionStoreConfig()
            assert config.redis_enabled is False, f"REDIS_ENABLED={val!r} should disable"

    def test_blank_env_uses_default(self):
        with patch.dict("os.environ", {"RETRY_ATTEMPTS": "  "}, clear=True):
            assert SessionStoreConfig().retry_attempts == 3

    @pytest.mark.parametrize("name,value", [
        ("AUTOSAVE_INTERVAL", "soon"),
        ("RETRY_ATTEMPTS", "3.5"),
        ("RETRY_DELAY", "fast"),
        ("SHUTDOWN_TIMEOUT", "never"),
    ])
    def test_invalid_env_values(self, name, value):
        with patch.dict("os.environ", {name: value}, clear=True):
            with pytest.raises(ConfigError, match=name):
                SessionStoreConfig()

    @pytest.mark.parametrize("overrides", [
        {"autosave_interval": 0},
        {"retry_attempts": 0},
        {"retry_delay": -1},
        {"shutdown_timeout": 0},
        {"data_key_prefix": "x_", "lock_key_prefix": "x_"},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ConfigError):
            SessionStoreConfig(**overrides)

    def test_key_layout(self):
        config = SessionStoreConfig()
        assert config.data_key("42") == "user_42"
        assert config.lock_key("42") == "sessionlock_42"

    def test_custom_prefixes(self):
        config = SessionStoreConfig(data_key_prefix="player:", lock_key_prefix="lock:")
        assert config.data_key("42") == "player:42"
        assert config.lock_key("42") == "lock:42"
