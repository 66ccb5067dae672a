"""
Read replica routing with fallback.

Manifesto:
    Read-heavy workloads offload queries to replicas, but a replica which
    is down, lagging into deadlocks or refusing an isolation level must
    not turn into an outage. A query carrying a :class:`Replica`
    configuration is redirected to a randomly chosen replica and, depending
    on the fallback strategy, retried on other replicas and/or the primary.

Architecture:
    ::

        ReplicaMiddleware(primary="main", replicas=["r1", "r2"])

        query(..., Replica(fallback=ANY))
            candidates = shuffle([r1, r2]) + [main]
            for candidate in candidates:
                next(source, context with Options(connection=candidate))
                   ✓ → return
                   ✗ connection/deadlock/isolation → remember first, continue
                   ✗ anything else → propagate
            raise first failure

        FallbackStrategy:
            NONE      [r?]                 one replica, no fallback
            PRIMARY   [r?, main]           one replica, then primary
            ANY       [r1, r2 (shuffled), main]
            REPLICAS  [r1, r2 (shuffled)]

Guardrails:
    ❌ DON'T: Route statements to replicas (LogicError, replicas are read-only)
    ✅ DO: Attach ``Replica`` to queries only

    ❌ DON'T: Read from a replica inside a transaction on the primary
    ✅ DO: Use ``ExecutionScope.NONE`` if stale reads are acceptable there

Tags:
    conduit, replica, read-scaling, fallback, middleware

Doc-Types:
    api-reference
"""

from __future__ import annotations

import random
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from conduit.core.adapters.registry import AdapterRegistry
from conduit.core.adapters.result import Result
from conduit.core.adapters.types import Options
from conduit.core.errors import (
    Catcher,
    DatabaseConnectionError,
    DeadlockError,
    InvalidArgumentError,
    IsolationError,
    LogicError,
)
from conduit.core.logging import get_logger

from .context import ExecutionContext
from .middleware import (
    Middleware,
    QueryNext,
    StatementNext,
    Transactional,
    TransactionalNext,
)

logger = get_logger(__name__)

DEFAULT_CATCH: tuple[type[BaseException], ...] = (
    DatabaseConnectionError,
    DeadlockError,
    IsolationError,
)


class FallbackStrategy(str, Enum):
    """Which connections are tried when a replica fails."""

    NONE = "none"
    ANY = "any"
    PRIMARY = "primary"
    REPLICAS = "replicas"


@dataclass(frozen=True)
class Replica:
    """Request to execute a query on a replica of *connection*.

    Attributes:
        connection: Primary connection whose replicas are used (default connection when ``None``)
        fallback: Fallback strategy, middleware default when ``None``
        catch: Failure kinds which trigger fallback, middleware default when ``None``
    """

    connection: str | None = None
    fallback: FallbackStrategy | None = None
    catch: tuple[type[BaseException], ...] | None = None

    def __post_init__(self) -> None:
        if self.catch is not None:
            object.__setattr__(self, "catch", tuple(self.catch))


class ReplicaMiddleware(Middleware):
    """Redirects queries of one primary connection to its replicas."""

    def __init__(
        self,
        registry: AdapterRegistry,
        replicas: Iterable[str],
        primary: str | None = None,
        *,
        disabled: bool = False,
        fallback: FallbackStrategy = FallbackStrategy.PRIMARY,
        catch: Iterable[type[BaseException]] = DEFAULT_CATCH,
        rng: random.Random | None = None,
    ):
        self._registry = registry
        self._primary = primary if primary is not None else registry.default
        self._replicas = tuple(replicas)
        self._disabled = disabled
        self._fallback = FallbackStrategy(fallback)
        self._catch = tuple(catch)
        self._random = rng if rng is not None else random.Random()

        if not self._replicas:
            raise InvalidArgumentError(f'No replica connections configured for "{self._primary}".')

        if self._primary in self._replicas:
            raise InvalidArgumentError(
                f'Primary connection "{self._primary}" is configured as replica connection.'
            )

        for name in (self._primary, *self._replicas):
            if not registry.has(name):
                raise InvalidArgumentError(f'Connection "{name}" is not registered.')

    @property
    def primary(self) -> str:
        return self._primary

    @property
    def replicas(self) -> tuple[str, ...]:
        return self._replicas

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        options = context.peek(Options)
        connection = (options.connection if options is not None else None) or self._registry.default

        # Query targets a connection this middleware is not bound to
        if connection != self._primary:
            return next(source, context)

        configuration = context.peek(Replica)
        if configuration is None:
            return next(source, context)

        if (configuration.connection or self._registry.default) != self._primary:
            return next(source, context)

        context.require(configuration)

        if self._disabled:
            return next(source, context)

        catcher = Catcher(configuration.catch if configuration.catch is not None else self._catch)
        first: Exception | None = None

        for candidate in self.connections(configuration):
            try:
                return next(source, self._replica_context(candidate, options, context))
            except Exception as exc:
                if not catcher.catchable(exc, chained=True):
                    raise

                if first is None:
                    first = exc

                logger.warning(
                    "replica_failed",
                    primary=self._primary,
                    connection=candidate,
                    source=source,
                    error=str(exc),
                )

        if first is None:
            raise LogicError(f'No connection available to execute query "{source}".')
        raise first

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        if context.peek(Replica) is not None:
            raise LogicError(
                f'Replica must not be used for executing statement "{source}", only queries.'
            )
        return next(source, context)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        if context.peek(Replica) is not None:
            raise LogicError(
                f'Replica must not be used for executing transaction "{context.source}", only queries.'
            )
        return next(function, context)

    def connections(self, configuration: Replica) -> list[str]:
        """Ordered candidate connections for *configuration*."""
        replicas = list(self._replicas)

        if len(replicas) > 1:
            self._random.shuffle(replicas)

        match configuration.fallback or self._fallback:
            case FallbackStrategy.NONE:
                return [replicas[0]]
            case FallbackStrategy.PRIMARY:
                return [replicas[0], self._primary]
            case FallbackStrategy.ANY:
                return [*replicas, self._primary]
            case FallbackStrategy.REPLICAS:
                return replicas
            case strategy:
                raise LogicError(f"Unknown replica fallback strategy {strategy!r}.")

    @staticmethod
    def _replica_context(
        connection: str,
        options: Options | None,
        context: ExecutionContext,
    ) -> ExecutionContext:
        if options is None:
            return context.append(Options(connection=connection))
        return context.replace(options, options.with_connection(connection))


__all__ = [
    "FallbackStrategy",
    "Replica",
    "ReplicaMiddleware",
    "DEFAULT_CATCH",
]
