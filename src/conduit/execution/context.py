"""
Per-call execution context with exactly-once configuration consumption.

Every ``query()``, ``statement()`` and ``transactional()`` call builds a
fresh :class:`ExecutionContext` holding the source text, the typed
configuration objects the caller supplied (``Options``, ``Parameters``,
``Retry``, ``Replica``, ``CacheIdentity``, ``Slow``...) and the current
transactional scope. Each middleware picks its own configuration out of
the context with :meth:`ExecutionContext.require`, which marks it as
consumed. The terminal stage refuses to dispatch while anything is left
unconsumed, so a configuration meant for a middleware which is not
registered surfaces as an error instead of being silently ignored.

Manifesto:
    - **Exactly once:** Requiring the same configuration twice is a
      LogicError
    - **Identity, not equality:** Two equal frozen dataclasses are two
      distinct entries; consumption is tracked per entry token
    - **Derive, don't mutate:** ``append``/``replace``/``fork`` return new
      contexts carrying a copy of the consumption table

Architecture:
    ::

        ExecutionContext
        ├── .source          → query/statement text, or function name
        ├── .configurations  → (Options, Parameters, Retry, ...)
        ├── .scope           → TransactionScope | None
        │
        ├── peek(Retry)      → Retry | None        (no consumption)
        ├── require(Retry)   → Retry | None        (marks consumed)
        ├── append(config)   → ExecutionContext
        ├── replace(old,new) → ExecutionContext    (keeps consumed flag)
        ├── fork()           → ExecutionContext    (copy of consumption)
        └── depleted()       → bool

Examples:
    >>> from conduit.core.adapters import Options
    >>> context = ExecutionContext("SELECT 1", [Options(connection="primary")])
    >>> context.depleted()
    False
    >>> context.require(Options).connection
    'primary'
    >>> context.depleted()
    True

Tags:
    conduit, execution, context, middleware, configuration

Doc-Types:
    api-reference
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar, overload

from conduit.core.adapters.parameters import Parameters
from conduit.core.adapters.types import Options, Transaction
from conduit.core.errors import InvalidArgumentError, LogicError, describe_types

if TYPE_CHECKING:
    from .scope import TransactionScope

C = TypeVar("C")

# Tokens are never reused, so entries of derived contexts stay comparable
_tokens = itertools.count(1)


class ExecutionContext:
    """
    Configuration container for one pipeline traversal.

    Not safe to share across concurrent calls: every call builds and owns
    its own context.
    """

    __slots__ = ("source", "scope", "_entries", "_consumed")

    def __init__(
        self,
        source: str,
        configurations: Iterable[object] = (),
        scope: TransactionScope | None = None,
    ):
        if not source:
            raise InvalidArgumentError("Execution source must be a non-empty string.")

        self.source = source
        self.scope = scope
        self._entries: tuple[tuple[int, object], ...] = ()
        self._consumed: dict[int, bool] = {}

        for configuration in configurations:
            self._add(next(_tokens), configuration, False)

    @classmethod
    def _derive(
        cls,
        origin: ExecutionContext,
        entries: tuple[tuple[int, object], ...],
        consumed: dict[int, bool],
    ) -> ExecutionContext:
        context = cls.__new__(cls)
        context.source = origin.source
        context.scope = origin.scope
        context._entries = entries
        context._consumed = consumed
        return context

    def _add(self, token: int, configuration: object, consumed: bool) -> None:
        for _, existing in self._entries:
            if existing is configuration:
                raise LogicError(
                    f'Configuration "{type(configuration).__qualname__}" is already part of execution context.'
                )
            if type(existing) is type(configuration):
                raise LogicError(
                    f'Execution context already contains configuration of type "{type(configuration).__qualname__}".'
                )
        self._entries = self._entries + ((token, configuration),)
        self._consumed[token] = consumed

    def _find(self, kind: type | object) -> tuple[int, object] | None:
        for token, configuration in self._entries:
            if isinstance(kind, type):
                if isinstance(configuration, kind):
                    return token, configuration
            elif configuration is kind:
                return token, configuration
        return None

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    @property
    def configurations(self) -> tuple[object, ...]:
        return tuple(configuration for _, configuration in self._entries)

    @overload
    def peek(self, kind: type[C]) -> C | None: ...

    @overload
    def peek(self, kind: object) -> Any: ...

    def peek(self, kind: Any) -> Any:
        """Find configuration by type (or identity) without consuming it."""
        found = self._find(kind)
        return found[1] if found is not None else None

    @overload
    def require(self, kind: type[C]) -> C | None: ...

    @overload
    def require(self, kind: object) -> Any: ...

    def require(self, kind: Any) -> Any:
        """Find configuration by type (or identity) and mark it consumed.

        Returns ``None`` when there is no such configuration.

        Raises:
            LogicError: the configuration was already consumed
        """
        found = self._find(kind)
        if found is None:
            return None

        token, configuration = found
        if self._consumed[token]:
            raise LogicError(
                f'Configuration "{type(configuration).__qualname__}" has already been consumed by '
                f"another middleware in chain."
            )
        self._consumed[token] = True
        return configuration

    def filter(self, kind: type[C]) -> tuple[C, ...]:
        """All configurations of the given type, without consuming them."""
        return tuple(c for _, c in self._entries if isinstance(c, kind))

    def depleted(self) -> bool:
        """True iff every configuration has been consumed."""
        return all(self._consumed[token] for token, _ in self._entries)

    def unused(self) -> tuple[object, ...]:
        return tuple(c for token, c in self._entries if not self._consumed[token])

    def used(self) -> tuple[object, ...]:
        return tuple(c for token, c in self._entries if self._consumed[token])

    # ------------------------------------------------------------------ #
    # Derivation
    # ------------------------------------------------------------------ #

    def append(self, configuration: object) -> ExecutionContext:
        """New context with an additional, unconsumed configuration."""
        context = self._derive(self, self._entries, dict(self._consumed))
        context._add(next(_tokens), configuration, False)
        return context

    def replace(self, old: Any, new: object) -> ExecutionContext:
        """New context where *old* (instance or type) is swapped for *new*.

        The consumed flag of *old* carries over to *new*.
        """
        found = self._find(old)
        if found is None:
            raise LogicError(
                f'Unable to replace configuration "{getattr(old, "__qualname__", type(old).__qualname__)}", '
                f"it is not part of execution context."
            )

        token, _ = found
        consumed = dict(self._consumed)
        was_consumed = consumed.pop(token)
        entries = tuple(entry for entry in self._entries if entry[0] != token)

        context = self._derive(self, entries, consumed)
        context._add(next(_tokens), new, was_consumed)
        return context

    def fork(self) -> ExecutionContext:
        """New context with the same entries and a copy of the consumption table."""
        return self._derive(self, self._entries, dict(self._consumed))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(source={self.source!r}, "
            f"used=[{describe_types(self.used())}], unused=[{describe_types(self.unused())}])"
        )


# ---------------------------------------------------------------------------
# Context construction for caller-facing operations
# ---------------------------------------------------------------------------


def execution_context(
    kind: str,
    source: str,
    configurations: Iterable[object],
    scope: TransactionScope | None = None,
) -> ExecutionContext:
    """Build the context of a query or statement call.

    Raises:
        InvalidArgumentError: a transaction request or more than one
            ``Options`` were supplied
    """
    configurations = tuple(configurations)

    if any(isinstance(c, Transaction) for c in configurations):
        raise InvalidArgumentError(
            f"You may not provide transaction configuration in context of {kind} execution."
        )

    options = [c for c in configurations if isinstance(c, Options)]
    if len(options) > 1:
        raise InvalidArgumentError(
            f"Only one execution options object for {kind} may be provided, {len(options)} given."
        )

    return ExecutionContext(source, configurations, scope)


def transaction_context(
    function: Callable[..., Any],
    configurations: Iterable[object],
    scope: TransactionScope | None = None,
) -> tuple[ExecutionContext, list[Transaction]]:
    """Build the context of a transactional call.

    Transaction requests are split off: they are consumed by the
    transaction orchestrator, not by middlewares.

    Raises:
        InvalidArgumentError: ``Options`` or ``Parameters`` were supplied
    """
    transactions: list[Transaction] = []
    remaining: list[object] = []

    for configuration in configurations:
        if isinstance(configuration, Transaction):
            transactions.append(configuration)
        elif isinstance(configuration, Options):
            raise InvalidArgumentError(
                "You may not provide execution options in context of transaction execution."
            )
        elif isinstance(configuration, Parameters):
            raise InvalidArgumentError(
                "You may not provide parameters in context of transaction execution."
            )
        else:
            remaining.append(configuration)

    source = getattr(function, "__qualname__", None) or repr(function)

    return ExecutionContext(source, remaining, scope), transactions


__all__ = [
    "ExecutionContext",
    "execution_context",
    "transaction_context",
]
