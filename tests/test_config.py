#!/usr/bin/env python3
"""Unit tests for environment-driven settings."""
import os

import pytest

from src.hillstone.api.exceptions import ConfigurationError
from src.hillstone.config import BackoffStrategy, ConflictPolicy, Settings

REQUIRED = {
    "HILLSTONE_DOMAIN": "root",
    "HILLSTONE_BASE_URL": "https://fw.example.com/",
    "HILLSTONE_USERNAME": "api",
    "HILLSTONE_PASSWORD": "secret",
}


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every HILLSTONE_ variable so a developer's .env cannot leak in."""
    for key in list(os.environ):
        if key.startswith("HILLSTONE_") or key == "DATABASE_URL":
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def required_env(clean_env):
    for key, value in REQUIRED.items():
        clean_env.setenv(key, value)
    return clean_env


class TestDefaults:
    def test_defaults(self, required_env):
        settings = Settings.from_env()

        assert settings.connection.base_url == "https://fw.example.com"
        assert settings.connection.verify_ssl is True
        assert settings.auth.token_cache_ttl == 1200
        assert settings.auth.max_auth_attempts == 3
        assert settings.sync.batch_size == 100
        assert settings.sync.cleanup_after_days == 30
        assert settings.sync.conflict_resolution is ConflictPolicy.LATEST_WINS
        assert settings.rate_limiting.requests_per_minute == 60
        assert settings.rate_limiting.burst_limit == 10
        assert settings.rate_limiting.backoff_strategy is BackoffStrategy.EXPONENTIAL
        assert settings.cache.auth_token_key == "hillstone_auth_token"
        assert settings.database_url is None

    def test_password_not_in_repr(self, required_env):
        assert "secret" not in repr(Settings.from_env())


class TestOverrides:
    def test_overrides(self, required_env):
        required_env.setenv("HILLSTONE_BATCH_SIZE", "25")
        required_env.setenv("HILLSTONE_VERIFY_SSL", "false")
        required_env.setenv("HILLSTONE_CONFLICT_RESOLUTION", "SKIP_EXISTING")
        required_env.setenv("HILLSTONE_RATE_LIMIT_BACKOFF_STRATEGY", "linear")
        required_env.setenv("HILLSTONE_CACHE_PREFIX", "fw1_")

        settings = Settings.from_env()

        assert settings.sync.batch_size == 25
        assert settings.connection.verify_ssl is False
        assert settings.sync.conflict_resolution is ConflictPolicy.SKIP_EXISTING
        assert settings.rate_limiting.backoff_strategy is BackoffStrategy.LINEAR
        assert settings.cache.auth_token_key == "fw1_auth_token"

    def test_blank_values_use_defaults(self, required_env):
        required_env.setenv("HILLSTONE_BATCH_SIZE", "  ")
        assert Settings.from_env().sync.batch_size == 100

    def test_bad_integer(self, required_env):
        required_env.setenv("HILLSTONE_BATCH_SIZE", "lots")
        with pytest.raises(ConfigurationError, match="HILLSTONE_BATCH_SIZE"):
            Settings.from_env()

    def test_bad_enum(self, required_env):
        required_env.setenv("HILLSTONE_CONFLICT_RESOLUTION", "newest")
        with pytest.raises(ConfigurationError, match="latest_wins"):
            Settings.from_env()


class TestValidate:
    def test_complete_settings_pass(self, required_env):
        Settings.from_env().validate()

    def test_missing_keys_listed(self, clean_env):
        clean_env.setenv("HILLSTONE_DOMAIN", "root")

        with pytest.raises(ConfigurationError) as exc:
            Settings.from_env().validate()

        assert exc.value.missing_keys == [
            "HILLSTONE_BASE_URL",
            "HILLSTONE_USERNAME",
            "HILLSTONE_PASSWORD",
        ]
        assert exc.value.recoverable is False

    def test_batch_size_must_be_positive(self, required_env):
        required_env.setenv("HILLSTONE_BATCH_SIZE", "0")
        with pytest.raises(ConfigurationError, match="at least 1"):
            Settings.from_env().validate()
