"""Tests for Replica configuration and ReplicaMiddleware."""

from __future__ import annotations

import random

import pytest

from conduit.core.adapters import AdapterRegistry, Options
from conduit.core.errors import (
    DatabaseConnectionError,
    DeadlockError,
    DriverSyntaxError,
    InvalidArgumentError,
    LogicError,
)
from conduit.execution import (
    CacheIdentity,
    CacheMiddleware,
    Executor,
    ExecutorMiddleware,
    FallbackStrategy,
    Replica,
    ReplicaMiddleware,
)


@pytest.fixture
def adapters(make_adapter):
    return {name: make_adapter(name) for name in ("p", "r1", "r2", "other")}


@pytest.fixture
def replica_registry(adapters):
    return AdapterRegistry(adapters.values())


@pytest.fixture
def make_replicated(replica_registry):
    def _make(**kwargs) -> Executor:
        kwargs.setdefault("rng", random.Random(7))
        middleware = ReplicaMiddleware(replica_registry, ["r1", "r2"], "p", **kwargs)
        return Executor([middleware, ExecutorMiddleware(replica_registry)], replica_registry)

    return _make


def queried(adapters) -> list[str]:
    return [name for name, adapter in adapters.items() if adapter.count("query")]


class TestCandidates:
    @pytest.mark.parametrize("seed", range(10))
    def test_primary_strategy(self, replica_registry, seed):
        middleware = ReplicaMiddleware(replica_registry, ["r1", "r2"], "p", rng=random.Random(seed))
        candidates = middleware.connections(Replica(fallback=FallbackStrategy.PRIMARY))
        assert len(candidates) == 2
        assert candidates[0] in {"r1", "r2"}
        assert candidates[1] == "p"

    def test_strategies(self, replica_registry):
        middleware = ReplicaMiddleware(replica_registry, ["r1", "r2"], "p")
        assert len(middleware.connections(Replica(fallback=FallbackStrategy.NONE))) == 1
        assert sorted(middleware.connections(Replica(fallback=FallbackStrategy.REPLICAS))) == ["r1", "r2"]
        any_ = middleware.connections(Replica(fallback=FallbackStrategy.ANY))
        assert sorted(any_[:2]) == ["r1", "r2"]
        assert any_[2] == "p"

    def test_middleware_default_strategy(self, replica_registry):
        middleware = ReplicaMiddleware(replica_registry, ["r1"], "p", fallback=FallbackStrategy.NONE)
        assert middleware.connections(Replica()) == ["r1"]


class TestConstruction:
    def test_empty_replicas(self, replica_registry):
        with pytest.raises(InvalidArgumentError):
            ReplicaMiddleware(replica_registry, [], "p")

    def test_primary_among_replicas(self, replica_registry):
        with pytest.raises(InvalidArgumentError):
            ReplicaMiddleware(replica_registry, ["p", "r1"], "p")

    def test_unregistered_replica(self, replica_registry):
        with pytest.raises(InvalidArgumentError):
            ReplicaMiddleware(replica_registry, ["r9"], "p")

    def test_primary_defaults_to_registry_default(self, replica_registry):
        assert ReplicaMiddleware(replica_registry, ["r1"]).primary == "p"


class TestRouting:
    def test_query_redirected_to_replica(self, make_replicated, adapters):
        result = make_replicated().query("SELECT 1", Replica())
        assert result.connection in {"r1", "r2"}
        assert queried(adapters) == [result.connection]

    def test_existing_options_are_replaced(self, make_replicated, adapters):
        make_replicated().query("SELECT 1", Options(connection="p"), Replica(fallback=FallbackStrategy.NONE))
        (replica,) = queried(adapters)
        options = adapters[replica].calls[0][3]
        assert options == Options(connection=replica)

    def test_without_configuration_uses_primary(self, make_replicated, adapters):
        make_replicated().query("SELECT 1")
        assert queried(adapters) == ["p"]

    def test_other_connection_passes_through(self, make_replicated):
        """A Replica meant for another primary is left for another middleware."""
        with pytest.raises(LogicError, match='"Replica"'):
            make_replicated().query("SELECT 1", Replica(connection="other"))

    def test_query_on_other_connection_not_redirected(self, make_replicated, adapters):
        with pytest.raises(LogicError, match='"Replica"'):
            make_replicated().query("SELECT 1", Options(connection="other"), Replica())
        assert queried(adapters) == []

    def test_disabled_consumes_and_uses_primary(self, make_replicated, adapters):
        make_replicated(disabled=True).query("SELECT 1", Replica())
        assert queried(adapters) == ["p"]


class TestFallback:
    def test_falls_back_to_primary(self, make_replicated, adapters):
        for name in ("r1", "r2"):
            adapters[name].fail("query", DatabaseConnectionError(f"{name} down"))

        result = make_replicated().query("SELECT 1", Replica(fallback=FallbackStrategy.PRIMARY))

        assert result.connection == "p"
        assert len(queried(adapters)) == 2

    def test_any_tries_every_connection(self, make_replicated, adapters):
        for name in ("r1", "r2"):
            adapters[name].fail("query", DeadlockError(f"{name} deadlock"))

        assert make_replicated().query("SELECT 1", Replica(fallback=FallbackStrategy.ANY)).connection == "p"
        assert sorted(queried(adapters)) == ["p", "r1", "r2"]

    def test_rethrows_first_failure(self, replica_registry, adapters):
        """When every candidate fails the first failure is raised."""
        errors = {name: DatabaseConnectionError(name) for name in ("r1", "r2")}
        for name, error in errors.items():
            adapters[name].fail("query", error)

        middleware = ReplicaMiddleware(replica_registry, ["r1", "r2"], "p", rng=random.Random(1))
        first = middleware.connections(Replica(fallback=FallbackStrategy.REPLICAS))[0]
        middleware = ReplicaMiddleware(replica_registry, ["r1", "r2"], "p", rng=random.Random(1))
        executor = Executor([middleware, ExecutorMiddleware(replica_registry)], replica_registry)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            executor.query("SELECT 1", Replica(fallback=FallbackStrategy.REPLICAS))

        assert exc_info.value is errors[first]

    def test_uncatchable_failure_propagates(self, make_replicated, adapters):
        for name in ("r1", "r2"):
            adapters[name].fail("query", DriverSyntaxError("syntax"))

        with pytest.raises(DriverSyntaxError):
            make_replicated().query("SELEC 1", Replica(fallback=FallbackStrategy.ANY))
        assert len(queried(adapters)) == 1

    def test_configuration_catch(self, make_replicated, adapters):
        for name in ("r1", "r2"):
            adapters[name].fail("query", DriverSyntaxError("replica lagging"))

        result = make_replicated().query("SELECT 1", Replica(catch=(DriverSyntaxError,)))
        assert result.connection == "p"


class TestStatementsAndTransactions:
    def test_statement_with_replica(self, make_replicated, adapters):
        with pytest.raises(LogicError):
            make_replicated().statement("DELETE FROM t", Replica())
        assert all(not adapter.calls for adapter in adapters.values())

    def test_transaction_with_replica(self, make_replicated, adapters):
        with pytest.raises(LogicError):
            make_replicated().transactional(lambda scoped: None, Replica())
        assert all(not adapter.calls for adapter in adapters.values())

    def test_statement_with_cache_identity(self, replica_registry, adapters):
        executor = Executor(
            [CacheMiddleware(), ExecutorMiddleware(replica_registry)],
            replica_registry,
        )
        with pytest.raises(LogicError):
            executor.statement("DELETE FROM t", CacheIdentity("k"))
        assert all(not adapter.calls for adapter in adapters.values())

    def test_replica_inside_transaction_violates_scope(self, make_replicated, adapters):
        """Redirected queries are validated against the transactional scope."""

        def work(scoped):
            scoped.query("SELECT 1", Replica(fallback=FallbackStrategy.NONE))

        with pytest.raises(LogicError, match="violates"):
            make_replicated().transactional(work)
        assert adapters["p"].methods() == ["begin", "rollback"]
