"""Retry with linear backoff for transient backend failures.

Attach a :class:`Retry` configuration to a call and the
:class:`RetryMiddleware` repeats it when it fails with a catchable failure
(deadlock and lock wait timeout by default).

Delay before attempt *n* (2..max_attempts), in microseconds::

    ceil((base_delay * n + base_delay * multiplier * (n - 1)) * 1_000_000)

The wait before attempt *n* is ``delay(n)``, not ``delay(n - 1)``: with
``Retry(0.01)`` the second attempt starts after 30 ms and the third after
50 ms. ``delay(1)`` is never slept.

Example:
    >>> Retry(0.01).delay(1)
    10000
    >>> Retry(0.01).delay(2)
    30000
    >>> executor.statement("UPDATE stock SET qty = qty - 1", Retry(0.05, max_attempts=5))

Retrying part of an in-flight transaction is refused, since statements
already executed in it would be repeated; ``unsafe=True`` overrides this.
A whole (outermost) transaction may be retried.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any

from conduit.core.adapters.result import Result
from conduit.core.errors import (
    Catcher,
    DeadlockError,
    InvalidArgumentError,
    LockWaitTimeoutError,
    LogicError,
)
from conduit.core.logging import get_logger

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

logger = get_logger(__name__)

DEFAULT_CATCH: tuple[type[BaseException], ...] = (DeadlockError, LockWaitTimeoutError)


@dataclass(frozen=True)
class Retry:
    """Retry configuration for a single call.

    Attributes:
        base_delay: Base delay in seconds (>= 0)
        max_attempts: Total number of attempts, including the first (>= 1)
        multiplier: Backoff multiplier (>= 1)
        unsafe: Allow retry within an active transaction
        catch: Failure kinds to retry, middleware default when ``None``
    """

    base_delay: float = 0.01
    max_attempts: int = 3
    multiplier: int = 1
    unsafe: bool = False
    catch: tuple[type[BaseException], ...] | None = None

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise InvalidArgumentError(f"Retry base delay must be non-negative, {self.base_delay} given.")
        if self.max_attempts < 1:
            raise InvalidArgumentError(f"Retry max attempts must be at least 1, {self.max_attempts} given.")
        if self.multiplier < 1:
            raise InvalidArgumentError(f"Retry multiplier must be at least 1, {self.multiplier} given.")
        if self.catch is not None:
            catch = tuple(self.catch)
            if not catch or not all(isinstance(c, type) and issubclass(c, BaseException) for c in catch):
                raise InvalidArgumentError("Retry catch must be a non-empty collection of exception types.")
            object.__setattr__(self, "catch", catch)

    def delay(self, attempt: int) -> int:
        """Delay before *attempt* in microseconds."""
        if attempt < 1 or attempt > self.max_attempts:
            raise InvalidArgumentError(
                f"Attempt must be between 1 and {self.max_attempts}, {attempt} given."
            )

        base = Decimal(str(self.base_delay))
        seconds = base * attempt + base * self.multiplier * (attempt - 1)
        return int((seconds * 1_000_000).to_integral_value(rounding=ROUND_CEILING))

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> Retry:
        """Build from ``ConduitSettings`` retry fields."""
        values = {
            "base_delay": settings.retry_base_delay,
            "max_attempts": settings.retry_max_attempts,
            "multiplier": settings.retry_multiplier,
        }
        values.update(overrides)
        return cls(**values)


class RetryMiddleware(Middleware):
    """Repeats calls carrying a :class:`Retry` configuration on catchable failures."""

    def __init__(
        self,
        catch: Iterable[type[BaseException]] = DEFAULT_CATCH,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._catch = tuple(catch)
        self._sleep = sleep

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        return self._execute(Operation.QUERY, source, context, next)

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        return self._execute(Operation.STATEMENT, source, context, next)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        return self._execute(Operation.TRANSACTIONAL, function, context, next)

    def _execute(self, operation: Operation, subject: Any, context: ExecutionContext, next: Next) -> Any:
        configuration = context.require(Retry)

        if configuration is None:
            return next(subject, context)

        if context.scope is not None and not configuration.unsafe:
            raise LogicError(
                f'Retry of {operation.value} "{context.source}" within active transaction is unsafe. '
                f"Retry the whole transaction, or mark retry configuration as unsafe."
            )

        catcher = Catcher(configuration.catch if configuration.catch is not None else self._catch)
        first: Exception | None = None

        for attempt in range(1, configuration.max_attempts + 1):
            if attempt > 1:
                self._sleep(configuration.delay(attempt) / 1_000_000)

            try:
                return next(subject, context.fork())
            except Exception as exc:
                if not catcher.catchable(exc, chained=True):
                    raise

                if first is None:
                    first = exc

                logger.warning(
                    "retry_attempt_failed",
                    operation=operation.value,
                    source=context.source,
                    attempt=attempt,
                    max_attempts=configuration.max_attempts,
                    error=str(exc),
                )

        if first is None:
            raise LogicError(f'No attempt of {operation.value} "{context.source}" was made.')
        raise first


__all__ = [
    "Retry",
    "RetryMiddleware",
    "DEFAULT_CATCH",
]
