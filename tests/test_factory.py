"""Tests for conduit.factory -- settings to middleware stack."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from conduit import configure_logging_from_settings, create_cache_backend, create_executor
from conduit.core.cache import CachePool, InMemoryCache, NullCache
from conduit.core.errors import DeadlockError, InvalidArgumentError, LogicError
from conduit.core.settings import ConduitSettings
from conduit.execution import (
    CacheIdentity,
    CacheMiddleware,
    ExecutorMiddleware,
    Replica,
    ReplicaMiddleware,
    Retry,
    RetryMiddleware,
    SlowExecutionMiddleware,
)


def settings(**kwargs) -> ConduitSettings:
    return ConduitSettings(_env_file=None, **kwargs)


class TestCreateCacheBackend:
    @pytest.mark.parametrize("url", [None, "null"])
    def test_null(self, url):
        assert isinstance(create_cache_backend(settings(cache_url=url)), NullCache)

    def test_memory(self):
        backend = create_cache_backend(settings(cache_url="memory", cache_default_ttl_seconds=30))
        assert isinstance(backend, InMemoryCache)
        assert backend._default_ttl == 30

    def test_redis(self):
        with patch("conduit.factory.RedisCache") as redis_cache:
            create_cache_backend(settings(cache_url="redis://localhost:6379/0"))
        redis_cache.assert_called_once_with("redis://localhost:6379/0", default_ttl_seconds=None)

    def test_unsupported(self):
        with pytest.raises(InvalidArgumentError):
            create_cache_backend(settings(cache_url="memcached://localhost"))


class TestCreateExecutor:
    def test_canonical_order(self, make_adapter):
        executor = create_executor([make_adapter("primary")], settings())
        assert [type(m) for m in executor.middlewares] == [
            CacheMiddleware,
            SlowExecutionMiddleware,
            RetryMiddleware,
            ExecutorMiddleware,
        ]

    def test_replica_middleware_when_configured(self, make_adapter):
        adapters = [make_adapter(name) for name in ("main", "r1")]
        executor = create_executor(adapters, settings(replica_primary="main", replicas="r1"))

        replica = executor.middlewares.find(ReplicaMiddleware)
        assert [type(m) for m in executor.middlewares][3] is ReplicaMiddleware
        assert replica.primary == "main"
        assert replica.replicas == ("r1",)

        assert executor.query("SELECT 1", Replica()).connection == "r1"

    def test_default_connection(self, make_adapter):
        executor = create_executor(
            [make_adapter("a"), make_adapter("b")],
            settings(default_connection="b"),
        )
        assert executor.registry.default == "b"

    def test_accepts_registry(self, registry):
        assert create_executor(registry, settings()).registry is registry

    def test_uses_global_settings(self, make_adapter, monkeypatch):
        monkeypatch.setenv("CONDUIT_DEFAULT_CONNECTION", "b")
        executor = create_executor([make_adapter("a"), make_adapter("b")])
        assert executor.registry.default == "b"

    def test_cache_from_settings(self, make_adapter):
        adapter = make_adapter("primary")
        executor = create_executor([adapter], settings(cache_url="memory"))

        executor.query("SELECT 1", CacheIdentity("k"))
        executor.query("SELECT 1", CacheIdentity("k"))

        assert adapter.count("query") == 1
        assert isinstance(executor.middlewares.find(CacheMiddleware).pool.backend, InMemoryCache)

    def test_explicit_cache_pool(self, make_adapter):
        pool = CachePool(InMemoryCache())
        executor = create_executor([make_adapter("primary")], settings(), cache=pool)
        assert executor.middlewares.find(CacheMiddleware).pool is pool

    def test_slow_logger(self, make_adapter):
        logger = MagicMock()
        executor = create_executor(
            [make_adapter("primary")],
            settings(slow_always=True, slow_threshold_ms=1),
            logger=logger,
        )

        middleware = executor.middlewares.find(SlowExecutionMiddleware)
        assert middleware._logger is logger

    def test_full_stack_retry(self, make_adapter):
        adapter = make_adapter("primary").fail("statement", DeadlockError("deadlock"))
        executor = create_executor([adapter], settings())

        assert executor.statement("UPDATE t SET x = 1", Retry(0)) == 1
        assert adapter.count("statement") == 2

    def test_registry_errors_surface(self):
        with pytest.raises(LogicError):
            create_executor([], settings())


class TestConfigureLoggingFromSettings:
    def test_uses_log_settings(self):
        with patch("conduit.factory.configure_logging") as configure:
            configure_logging_from_settings(settings(log_level="debug", log_json=True), service="orders")
        configure.assert_called_once_with(level="debug", json_format=True, service="orders")

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("CONDUIT_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("CONDUIT_LOG_JSON", "false")
        with patch("conduit.factory.configure_logging") as configure:
            configure_logging_from_settings()
        configure.assert_called_once_with(level="WARNING", json_format=False, service="conduit")
