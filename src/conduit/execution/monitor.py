"""Slow execution monitor.

Measures how long the rest of the chain takes for calls carrying a
:class:`Slow` configuration (or every call, when the middleware is built
with ``always=True``) and logs the ones exceeding the threshold.

Example:
    >>> executor.query("SELECT * FROM report", Slow(threshold=500, identity="monthly_report"))

Logged as ``slow_query_detected``, ``slow_statement_detected`` or
``slow_transactional_detected``, with ``identity``, ``duration_ms``,
``threshold_ms`` and ``parameters`` keys.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from conduit.core.adapters.parameters import Parameters
from conduit.core.adapters.result import Result
from conduit.core.errors import InvalidArgumentError
from conduit.core.logging import get_logger, resolve_level

from .context import ExecutionContext
from .middleware import (
    Middleware,
    Next,
    Operation,
    QueryNext,
    StatementNext,
    Transactional,
    TransactionalNext,
)


@dataclass(frozen=True)
class Slow:
    """Monitor this call.

    Attributes:
        threshold: Milliseconds beyond which the call is slow, middleware default when ``None``
        identity: Name to log instead of the source text
    """

    threshold: int | None = None
    identity: str | None = None

    def __post_init__(self) -> None:
        if self.threshold is not None and self.threshold < 1:
            raise InvalidArgumentError(f"Slow threshold must be positive, {self.threshold} given.")
        if self.identity is not None and not self.identity:
            raise InvalidArgumentError("Slow identity must be a non-empty string.")


class SlowExecutionMiddleware(Middleware):
    """Logs calls whose execution time exceeds a threshold (milliseconds)."""

    def __init__(
        self,
        logger: Any = None,
        level: str = "error",
        threshold: int = 100,
        always: bool = False,
        clock: Callable[[], float] = time.perf_counter,
    ):
        resolve_level(level)

        if threshold < 1:
            raise InvalidArgumentError(f"Slow threshold must be positive, {threshold} given.")

        self._logger = logger if logger is not None else get_logger(__name__)
        self._level = level.lower()
        self._threshold = threshold
        self._default = Slow(threshold) if always else None
        self._clock = clock

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        return self._monitor(Operation.QUERY, source, context, next)

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        return self._monitor(Operation.STATEMENT, source, context, next)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        return self._monitor(Operation.TRANSACTIONAL, function, context, next)

    def _monitor(self, operation: Operation, subject: Any, context: ExecutionContext, next: Next) -> Any:
        configuration = context.require(Slow) or self._default

        if configuration is None:
            return next(subject, context)

        start = self._clock()
        result = next(subject, context)
        duration = max(0, int((self._clock() - start) * 1000))
        threshold = configuration.threshold or self._threshold

        if duration > threshold:
            parameters = context.peek(Parameters)
            getattr(self._logger, self._level)(
                f"slow_{operation.value}_detected",
                identity=configuration.identity or context.source,
                duration_ms=duration,
                threshold_ms=threshold,
                parameters=len(parameters) if parameters is not None else 0,
            )

        return result


__all__ = [
    "Slow",
    "SlowExecutionMiddleware",
]
