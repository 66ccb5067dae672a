"""Transactional scope: which connections have open transactions at each nesting level."""

from __future__ import annotations

from collections.abc import Iterable

from conduit.core.adapters.types import ExecutionScope, Transaction
from conduit.core.errors import LogicError


class TransactionScope:
    """
    Immutable node of the transaction scope stack.

    Holds the transactions begun by one ``transactional()`` call and a link
    to the scope that was active when that call was made.

    Example:
        >>> outer = TransactionScope([Transaction("a")])
        >>> inner = TransactionScope([Transaction("b")], outer)
        >>> inner.accepts("a", ExecutionScope.STRICT)
        False
        >>> inner.accepts("a", ExecutionScope.PARENT)
        True
    """

    __slots__ = ("transactions", "connections", "parent")

    def __init__(
        self,
        transactions: Iterable[Transaction],
        parent: TransactionScope | None = None,
    ):
        self.transactions: tuple[Transaction, ...] = tuple(transactions)
        names = [t.connection for t in self.transactions]

        if any(name is None for name in names):
            raise LogicError("Transaction scope requires transactions bound to a connection.")

        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise LogicError(
                f'Transaction scope can not be created using same connection multiple times ("{", ".join(duplicates)}").'
            )

        self.connections: frozenset[str] = frozenset(names)
        self.parent = parent

    @property
    def depth(self) -> int:
        """Nesting depth, 1 for the outermost transaction."""
        return 1 if self.parent is None else self.parent.depth + 1

    def accepts(self, connection: str, policy: ExecutionScope) -> bool:
        """Check if *connection* may be used in this scope under *policy*."""
        match policy:
            case ExecutionScope.NONE:
                return True
            case ExecutionScope.STRICT:
                return connection in self.connections
            case ExecutionScope.PARENT:
                if connection in self.connections:
                    return True
                return self.parent is not None and self.parent.accepts(connection, policy)
            case _:
                raise LogicError(f"Unknown execution scope {policy!r}.")

    def __repr__(self) -> str:
        return f"TransactionScope(connections={sorted(self.connections)}, depth={self.depth})"


def enforce_scope(
    scope: TransactionScope | None,
    connection: str,
    policy: ExecutionScope | None,
    kind: str,
    source: str,
) -> None:
    """Raise LogicError when *connection* is not usable in *scope*.

    The policy defaults to ``ExecutionScope.STRICT``. Outside of any
    transaction every connection is usable.
    """
    if scope is None:
        return

    policy = policy or ExecutionScope.STRICT
    if not scope.accepts(connection, policy):
        raise LogicError(
            f'Execution of {kind} "{source}" using connection "{connection}" within transaction '
            f'violates current transactional scope execution configuration "{policy.name}".'
        )


__all__ = [
    "TransactionScope",
    "enforce_scope",
]
