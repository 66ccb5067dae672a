"""
Executor facade and the terminal dispatch stage.

:class:`Executor` is what application code holds: ``query()``,
``statement()`` and ``transactional()``. Every call builds a fresh
execution context and runs it through the middleware chain, which must end
with :class:`ExecutorMiddleware`. The terminal stage resolves the adapter,
validates the call against the transactional scope, refuses to dispatch
while any configuration is unconsumed, then invokes the adapter.

Examples:
    >>> from conduit.core.adapters import AdapterRegistry, Named, SQLAlchemyAdapter
    >>> registry = AdapterRegistry([SQLAlchemyAdapter("primary", engine)])
    >>> executor = Executor([ExecutorMiddleware(registry)], registry)
    >>> executor.query("SELECT title FROM posts WHERE id = :id", Named({"id": 1})).scalar()
    'Hello'

Tags:
    conduit, executor, middleware, dispatch, facade

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from conduit.core.adapters.parameters import Parameters
from conduit.core.adapters.registry import AdapterRegistry
from conduit.core.adapters.result import Result
from conduit.core.adapters.types import Options
from conduit.core.errors import LogicError, describe_types

from .context import ExecutionContext
from .middleware import (
    Middleware,
    MiddlewareChain,
    Next,
    Operation,
    QueryNext,
    StatementNext,
    Transactional,
    TransactionalNext,
    terminate,
)
from .scope import enforce_scope
from .transaction import BaseExecutor


class ExecutorMiddleware(Middleware):
    """Terminal stage: dispatches the call to the resolved adapter."""

    def __init__(self, registry: AdapterRegistry):
        self._registry = registry

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        self._assert_last(next)
        return self._dispatch(Operation.QUERY, source, context)

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        self._assert_last(next)
        return self._dispatch(Operation.STATEMENT, source, context)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        self._assert_last(next)
        self._assert_depleted(context)
        return function(context.scope)

    def _dispatch(self, operation: Operation, source: str, context: ExecutionContext) -> Any:
        options = context.require(Options) or Options()
        connection = options.connection or self._registry.default
        options = options.with_connection(connection)

        parameters = context.require(Parameters)

        enforce_scope(context.scope, connection, options.scope, operation.value, source)
        self._assert_depleted(context)

        adapter = self._registry.get(connection)

        match operation:
            case Operation.QUERY:
                return adapter.query(source, parameters, options)
            case Operation.STATEMENT:
                return adapter.statement(source, parameters, options)
            case _:
                raise LogicError(f"Operation {operation.value} can not be dispatched to adapter.")

    @staticmethod
    def _assert_last(next: Next) -> None:
        if next is not terminate:
            raise LogicError(f"{ExecutorMiddleware.__name__} must be the last middleware in chain.")

    @staticmethod
    def _assert_depleted(context: ExecutionContext) -> None:
        if not context.depleted():
            raise LogicError(
                f"Configurations {describe_types(context.unused())} were not consumed by any "
                f"middleware in chain. Did you forget to register middleware?"
            )


class Executor(BaseExecutor):
    """
    Entry point for executing queries, statements and transactions.

    While a ``transactional()`` call is running, this executor rejects
    calls; the transactional function must use the executor it receives.
    """

    def __init__(
        self,
        middlewares: MiddlewareChain | Sequence[Middleware],
        registry: AdapterRegistry,
    ):
        if not isinstance(middlewares, MiddlewareChain):
            middlewares = MiddlewareChain(middlewares)
        super().__init__(middlewares, registry)


__all__ = [
    "Executor",
    "ExecutorMiddleware",
]
