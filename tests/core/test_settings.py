"""Tests for conduit.core.settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from conduit.core.settings import ConduitSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        s = ConduitSettings(_env_file=None)
        assert s.default_connection is None
        assert s.retry_base_delay == 0.01
        assert s.retry_max_attempts == 3
        assert s.retry_multiplier == 1
        assert s.replicas == []
        assert s.replica_fallback == "primary"
        assert s.replicas_enabled is False
        assert s.slow_threshold_ms == 100
        assert s.slow_log_level == "error"
        assert s.cache_url is None


class TestEnvironment:
    def test_reads_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CONDUIT_CACHE_URL", "memory")
        s = ConduitSettings(_env_file=None)
        assert s.retry_max_attempts == 5
        assert s.cache_url == "memory"

    def test_replicas_comma_separated(self, monkeypatch):
        """CONDUIT_REPLICAS is a plain comma separated list, not JSON."""
        monkeypatch.setenv("CONDUIT_REPLICA_PRIMARY", "main")
        monkeypatch.setenv("CONDUIT_REPLICAS", "r1, r2")
        s = ConduitSettings(_env_file=None)
        assert s.replicas == ["r1", "r2"]
        assert s.replicas_enabled is True

    def test_fallback_normalized(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_REPLICA_FALLBACK", "ANY")
        assert ConduitSettings(_env_file=None).replica_fallback == "any"


class TestValidation:
    def test_primary_listed_as_replica(self):
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, replica_primary="main", replicas=["main", "r1"])

    def test_replicas_without_primary(self):
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, replicas=["r1"])

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, slow_log_level="loud")

    def test_retry_bounds(self):
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, retry_max_attempts=0)
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, retry_base_delay=-1)

    def test_unknown_fallback(self):
        with pytest.raises(ValidationError):
            ConduitSettings(_env_file=None, replica_fallback="nearest")


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("CONDUIT_SLOW_THRESHOLD_MS", "250")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.slow_threshold_ms == 250

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
