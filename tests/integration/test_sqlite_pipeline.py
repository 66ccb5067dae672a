"""End-to-end pipeline over two file-backed SQLite databases."""

from __future__ import annotations

import pytest
from sqlalchemy import event

from conduit import create_executor
from conduit.core.adapters import (
    ExecutionScope,
    Named,
    Options,
    SQLAlchemyAdapter,
    Transaction,
    create_sqlite_engine,
)
from conduit.core.errors import (
    CommitTransactionError,
    DriverSyntaxError,
    LogicError,
    TransactionScopeRollbackError,
)
from conduit.core.settings import ConduitSettings
from conduit.execution import CacheIdentity, Slow

pytestmark = pytest.mark.integration


class Boom(RuntimeError):
    pass


@pytest.fixture
def executor(tmp_path):
    engines = {name: create_sqlite_engine(f"sqlite:///{tmp_path / name}.db") for name in ("orders", "audit")}
    adapters = [SQLAlchemyAdapter(name, engine) for name, engine in engines.items()]

    adapters[0].statement("CREATE TABLE orders (id INTEGER PRIMARY KEY, total INTEGER NOT NULL)")
    adapters[1].statement("CREATE TABLE audit (id INTEGER PRIMARY KEY, message TEXT NOT NULL)")

    yield create_executor(adapters, ConduitSettings(_env_file=None, cache_url="memory"))

    for adapter in adapters:
        adapter.close()
    for engine in engines.values():
        engine.dispose()


def totals(executor) -> list[int]:
    return executor.query("SELECT total FROM orders ORDER BY id").vector()


def messages(executor) -> list[str]:
    return executor.query("SELECT message FROM audit ORDER BY id", Options(connection="audit")).vector()


class TestStandalone:
    def test_statement_and_query(self, executor):
        assert executor.statement("INSERT INTO orders (total) VALUES (:total)", Named({"total": 10})) == 1
        assert totals(executor) == [10]

    def test_cached_query(self, executor):
        executor.statement("INSERT INTO orders (total) VALUES (1)")
        assert executor.query("SELECT COUNT(*) FROM orders", CacheIdentity("count")).scalar() == 1

        executor.statement("INSERT INTO orders (total) VALUES (2)")
        assert executor.query("SELECT COUNT(*) FROM orders", CacheIdentity("count")).scalar() == 1
        assert executor.query("SELECT COUNT(*) FROM orders").scalar() == 2

    def test_driver_errors_translated(self, executor):
        with pytest.raises(DriverSyntaxError):
            executor.query("SELEC 1", Slow())


class TestTransactions:
    def test_commit_across_connections(self, executor):
        def place(scoped):
            scoped.statement("INSERT INTO orders (total) VALUES (5)")
            scoped.statement("INSERT INTO audit (message) VALUES ('placed')", Options(connection="audit"))
            return "ok"

        assert executor.transactional(place, Transaction("orders"), Transaction("audit")) == "ok"
        assert totals(executor) == [5]
        assert messages(executor) == ["placed"]

    def test_rollback_across_connections(self, executor):
        def place(scoped):
            scoped.statement("INSERT INTO orders (total) VALUES (5)")
            scoped.statement("INSERT INTO audit (message) VALUES ('placed')", Options(connection="audit"))
            raise Boom()

        with pytest.raises(Boom):
            executor.transactional(place, Transaction("orders"), Transaction("audit"))

        assert totals(executor) == []
        assert messages(executor) == []

    def test_connection_outside_scope_rejected(self, executor):
        def place(scoped):
            scoped.statement("INSERT INTO audit (message) VALUES ('x')", Options(connection="audit"))

        with pytest.raises(LogicError):
            executor.transactional(place)
        assert messages(executor) == []

    def test_nested_rollback_keeps_outer_work(self, executor):
        def inner(scoped):
            scoped.statement("INSERT INTO orders (total) VALUES (2)")
            raise Boom()

        def outer(scoped):
            scoped.statement("INSERT INTO orders (total) VALUES (1)")
            with pytest.raises(Boom):
                scoped.transactional(inner)
            scoped.statement(
                "INSERT INTO audit (message) VALUES ('after')",
                Options(connection="audit", scope=ExecutionScope.NONE),
            )

        executor.transactional(outer)

        assert totals(executor) == [1]
        assert messages(executor) == ["after"]


@pytest.fixture
def constrained(tmp_path):
    """Executor over a database whose foreign keys are checked at COMMIT."""
    engine = create_sqlite_engine(f"sqlite:///{tmp_path / 'constrained'}.db")

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _rec):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    adapter = SQLAlchemyAdapter("orders", engine)
    adapter.statement("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
    adapter.statement(
        "CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER "
        "REFERENCES parent (id) DEFERRABLE INITIALLY DEFERRED)"
    )

    yield create_executor([adapter], ConduitSettings(_env_file=None))

    adapter.close()
    engine.dispose()


class TestCommitFailure:
    def test_commit_error_propagates(self, constrained):
        def orphan(scoped):
            scoped.statement("INSERT INTO child (parent_id) VALUES (99)")

        with pytest.raises(CommitTransactionError) as exc_info:
            constrained.transactional(orphan)
        assert not isinstance(exc_info.value, TransactionScopeRollbackError)

    def test_executor_usable_afterwards(self, constrained):
        with pytest.raises(CommitTransactionError):
            constrained.transactional(lambda scoped: scoped.statement("INSERT INTO child (parent_id) VALUES (99)"))

        assert constrained.query("SELECT COUNT(*) FROM child").scalar() == 0
        assert constrained.statement("INSERT INTO parent (id) VALUES (1)") == 1
        constrained.transactional(lambda scoped: scoped.statement("INSERT INTO child (parent_id) VALUES (1)"))
        assert constrained.query("SELECT COUNT(*) FROM child").scalar() == 1
