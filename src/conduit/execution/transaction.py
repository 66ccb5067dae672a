"""
Transaction orchestration across independent backends.

Manifesto:
    A unit of work may span several connections which know nothing about
    each other. The orchestrator begins a transaction on every requested
    connection, runs the caller's function with an executor bound to the
    new scope, and commits everything or rolls back everything that was
    begun. When a rollback itself fails, consistency of that connection
    can no longer be trusted: every rollback failure is collected and
    reported together with the failure which triggered the rollback.

Architecture:
    ::

        executor.transactional(fn, Transaction("a"), Transaction("b"))
            │
            ▼
        TransactionOrchestrator(parent_scope)
            1. a.begin() → ha,  b.begin() → hb     (stop at first failure)
            2. scope = TransactionScope([ha, hb], parent_scope)
            3. result = fn(ScopedExecutor(scope))
            4a. a.commit(ha), b.commit(hb)          → result
            4b. rollback every begun, uncommitted   → original failure
                                                      or TransactionScopeRollbackError

Features:
    - **TransactionOrchestrator:** re-invocable, every invocation begins
      fresh transactions (retry of a whole transaction)
    - **ScopedExecutor:** query/statement/transactional validated against
      the layered scope; unusable once its transaction finished
    - **BaseExecutor:** caller-facing operations shared with ``Executor``
    - **Log context:** events logged while a transaction runs carry
      ``transaction`` (function name) and ``transaction_depth``

Guardrails:
    ❌ DON'T: Use the outer executor inside a transactional function
    ✅ DO: Use the executor passed to the function

    ❌ DON'T: Request two transactions on the same connection in one call
    ✅ DO: Nest ``transactional()`` calls (SAVEPOINT per level)

Tags:
    conduit, transactions, distributed-rollback, scope, executor

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar

from conduit.core.adapters.base import Adapter
from conduit.core.adapters.registry import AdapterRegistry
from conduit.core.adapters.result import Result
from conduit.core.adapters.types import Options, Transaction
from conduit.core.errors import LogicError, TransactionScopeRollbackError
from conduit.core.logging import LogContext, get_logger

from .context import execution_context, transaction_context
from .middleware import MiddlewareChain
from .scope import TransactionScope, enforce_scope

logger = get_logger(__name__)

T = TypeVar("T")


class BaseExecutor:
    """Caller-facing ``query``/``statement``/``transactional`` operations."""

    def __init__(
        self,
        middlewares: MiddlewareChain,
        registry: AdapterRegistry,
        scope: TransactionScope | None = None,
    ):
        self._middlewares = middlewares
        self._registry = registry
        self._scope = scope
        self._current = True

    @property
    def middlewares(self) -> MiddlewareChain:
        return self._middlewares

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    @property
    def scope(self) -> TransactionScope | None:
        return self._scope

    def _assert_current(self) -> None:
        if not self._current:
            raise LogicError(
                "You are invoking method of executor which is not in current transactional scope."
            )

    def query(self, source: str, *configurations: object) -> Result:
        """Execute query through the middleware pipeline."""
        self._assert_current()
        context = execution_context("query", source, configurations, self._scope)
        self._enforce(context.peek(Options), "query", source)
        return self._middlewares.query(source, context)

    def statement(self, source: str, *configurations: object) -> int:
        """Execute statement through the middleware pipeline, return affected rows."""
        self._assert_current()
        context = execution_context("statement", source, configurations, self._scope)
        self._enforce(context.peek(Options), "statement", source)
        return self._middlewares.statement(source, context)

    def transactional(self, function: Callable[[ScopedExecutor], T], *configurations: object) -> T:
        """Run *function* inside transactions on the requested connections.

        ``configurations`` holds ``Transaction`` requests (none → default
        connection) and middleware configurations (``Retry``, ``Slow``...).
        """
        self._assert_current()
        context, transactions = transaction_context(function, configurations, self._scope)
        orchestrator = TransactionOrchestrator(self._middlewares, self._registry, function, transactions)

        self._current = False
        try:
            return self._middlewares.transactional(orchestrator, context)
        finally:
            self._current = True

    def _enforce(self, options: Options | None, kind: str, source: str) -> None:
        connection = (options.connection if options is not None else None) or self._registry.default
        enforce_scope(self._scope, connection, options.scope if options is not None else None, kind, source)


class ScopedExecutor(BaseExecutor):
    """Executor bound to one transactional scope, handed to transactional functions."""

    def __init__(self, middlewares: MiddlewareChain, registry: AdapterRegistry, scope: TransactionScope):
        super().__init__(middlewares, registry, scope)
        self._closed = False

    @property
    def scope(self) -> TransactionScope:
        if self._scope is None:
            raise LogicError("Scoped executor has no transactional scope.")
        return self._scope

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def _assert_current(self) -> None:
        if self._closed:
            raise LogicError("Execution of this transaction is closed.")
        super()._assert_current()


class TransactionOrchestrator:
    """
    Runs one function inside transactions spanning 0..N named connections.

    Callable with the parent scope (``None`` for the outermost transaction);
    this is the subject passed down the ``transactional`` pipeline.
    """

    def __init__(
        self,
        middlewares: MiddlewareChain,
        registry: AdapterRegistry,
        function: Callable[[ScopedExecutor], Any],
        transactions: Iterable[Transaction] = (),
    ):
        requests = [
            t if t.connection is not None else t.with_connection(registry.default)
            for t in transactions
        ] or [Transaction(connection=registry.default)]

        names = [t.connection for t in requests]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise LogicError(
                f'Transaction scope can not be created using same connection multiple times ("{", ".join(duplicates)}").'
            )

        self._middlewares = middlewares
        self._registry = registry
        self._function = function
        self._name = getattr(function, "__qualname__", None) or repr(function)
        self._requests: list[tuple[Adapter, Transaction]] = [
            (registry.get(t.connection), t) for t in requests
        ]

    @property
    def function(self) -> Callable[[ScopedExecutor], Any]:
        return self._function

    @property
    def transactions(self) -> Sequence[Transaction]:
        return [request for _, request in self._requests]

    def __call__(self, parent: TransactionScope | None = None) -> Any:
        depth = 1 if parent is None else parent.depth + 1
        with LogContext(transaction=self._name, transaction_depth=depth):
            return self._run(parent, depth)

    def _run(self, parent: TransactionScope | None, depth: int) -> Any:
        begun: list[tuple[Adapter, Transaction]] = []
        committed = 0
        executor: ScopedExecutor | None = None

        try:
            for adapter, request in self._requests:
                handle = adapter.begin(request)
                begun.append((adapter, handle))
                logger.debug("transaction_begin", connection=adapter.name, depth=depth)

            executor = ScopedExecutor(
                self._middlewares,
                self._registry,
                TransactionScope([handle for _, handle in begun], parent),
            )

            result = self._function(executor)

            for adapter, handle in begun:
                adapter.commit(handle)
                committed += 1
                logger.debug("transaction_commit", connection=adapter.name, depth=depth)

            return result
        except Exception as exc:
            original = exc
            failures: dict[str, BaseException] = {}

            for adapter, handle in begun[committed:]:
                try:
                    adapter.rollback(handle)
                    logger.debug("transaction_rollback", connection=adapter.name, depth=depth)
                except Exception as rollback_error:
                    failures[adapter.name] = rollback_error
                    logger.error(
                        "transaction_rollback_failed",
                        connection=adapter.name,
                        depth=depth,
                        error=str(rollback_error),
                    )

            if not failures:
                raise

            raise TransactionScopeRollbackError(
                f'Unable to rollback transaction for connections: "{", ".join(failures)}".',
                original,
                failures,
            ) from original
        finally:
            if executor is not None:
                executor.close()


__all__ = [
    "BaseExecutor",
    "ScopedExecutor",
    "TransactionOrchestrator",
]
