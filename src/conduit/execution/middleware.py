"""
Middleware interface and chain builder.

Manifesto:
    Cross-cutting policies (cache-aside, slow execution monitoring,
    retry, replica routing) wrap backend calls without knowing about each
    other. Each policy is a :class:`Middleware` with one method per
    operation; each method receives the subject, the execution context and
    an explicit ``next`` continuation. The chain is an explicit fold over
    that list, ending with a terminator which refuses to be called.

Architecture:
    ::

        MiddlewareChain([Cache, Slow, Retry, Replica, ExecutorMiddleware])

        query(source, context)
            │
            ▼
        Cache.query ──next──▶ Slow.query ──next──▶ Retry.query
            ──next──▶ Replica.query ──next──▶ ExecutorMiddleware.query
            ──next──▶ terminate()  ✗ LogicError if ever called

    Pipelines are folded from the end backward, lazily, and cached per
    :class:`Operation`.

Features:
    - **Operation enum:** QUERY, STATEMENT, TRANSACTIONAL
    - **Middleware:** pass-through defaults for every operation
    - **MiddlewareChain:** fold, cache, ``find()`` a middleware by type

Examples:
    >>> class Audit(Middleware):
    ...     def query(self, source, context, next):
    ...         print("querying", source)
    ...         return next(source, context)

Tags:
    conduit, middleware, chain-of-responsibility, pipeline

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

from conduit.core.errors import InvalidArgumentError, LogicError

if TYPE_CHECKING:
    from conduit.core.adapters.result import Result

    from .context import ExecutionContext
    from .scope import TransactionScope

M = TypeVar("M", bound="Middleware")

Next = Callable[[Any, "ExecutionContext"], Any]
QueryNext = Callable[[str, "ExecutionContext"], "Result"]
StatementNext = Callable[[str, "ExecutionContext"], int]
Transactional = Callable[["TransactionScope | None"], Any]
TransactionalNext = Callable[[Transactional, "ExecutionContext"], Any]


class Operation(str, Enum):
    """Closed set of operations a pipeline can be built for."""

    QUERY = "query"
    STATEMENT = "statement"
    TRANSACTIONAL = "transactional"


class Middleware:
    """
    Base class for pipeline middlewares.

    Override the operations the middleware acts upon; the defaults pass
    the call through unchanged.
    """

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        return next(source, context)

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        return next(source, context)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        return next(function, context)


def terminate(subject: Any, context: ExecutionContext) -> Any:
    """Innermost continuation of every pipeline, must never be invoked."""
    raise LogicError("Executor must not invoke next middleware in chain.")


class MiddlewareChain:
    """Ordered middlewares folded into one pipeline per operation."""

    def __init__(self, middlewares: Sequence[Middleware]):
        if not middlewares:
            raise InvalidArgumentError("Middleware chain requires at least one middleware.")

        self._middlewares: tuple[Middleware, ...] = tuple(middlewares)
        self._pipelines: dict[Operation, Next] = {}

    def pipeline(self, operation: Operation) -> Next:
        """Composed function for *operation*, built on first use."""
        if operation not in self._pipelines:
            self._pipelines[operation] = self._build(operation)
        return self._pipelines[operation]

    def _build(self, operation: Operation) -> Next:
        pipeline: Next = terminate
        for middleware in reversed(self._middlewares):
            pipeline = partial(self._method(middleware, operation), next=pipeline)
        return pipeline

    @staticmethod
    def _method(middleware: Middleware, operation: Operation) -> Callable[..., Any]:
        match operation:
            case Operation.QUERY:
                return middleware.query
            case Operation.STATEMENT:
                return middleware.statement
            case Operation.TRANSACTIONAL:
                return middleware.transactional
            case _:
                raise LogicError(f"Unknown operation {operation!r}.")

    def query(self, source: str, context: ExecutionContext) -> Result:
        return self.pipeline(Operation.QUERY)(source, context)

    def statement(self, source: str, context: ExecutionContext) -> int:
        return self.pipeline(Operation.STATEMENT)(source, context)

    def transactional(self, function: Transactional, context: ExecutionContext) -> Any:
        return self.pipeline(Operation.TRANSACTIONAL)(function, context)

    def find(self, kind: type[M]) -> M | None:
        """First middleware of the given type, if registered."""
        for middleware in self._middlewares:
            if isinstance(middleware, kind):
                return middleware
        return None

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    def __repr__(self) -> str:
        names = ", ".join(type(m).__name__ for m in self._middlewares)
        return f"MiddlewareChain([{names}])"


__all__ = [
    "Operation",
    "Middleware",
    "MiddlewareChain",
    "terminate",
    "Next",
    "QueryNext",
    "StatementNext",
    "Transactional",
    "TransactionalNext",
]
