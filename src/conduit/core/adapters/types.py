"""Execution options, transaction requests and their enums."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class ExecutionScope(str, Enum):
    """
    How strictly the target connection of a call must match the
    transactional scope it runs in.

    - ``NONE``: execute anywhere, even outside any transaction
    - ``PARENT``: connection must be part of the current or any outer scope
    - ``STRICT``: connection must be part of the current (innermost) scope
    """

    NONE = "none"
    PARENT = "parent"
    STRICT = "strict"


class IsolationLevel(str, Enum):
    """Transaction isolation levels (values are SQLAlchemy level names)."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True)
class Options:
    """
    Per-call execution options.

    Attributes:
        connection: Target connection, registry default when ``None``
        isolation: Isolation level for this single call
        scope: Scope policy, ``ExecutionScope.STRICT`` when ``None``
    """

    connection: str | None = None
    isolation: IsolationLevel | None = None
    scope: ExecutionScope | None = None

    def with_connection(self, connection: str) -> Options:
        return replace(self, connection=connection)


@dataclass(frozen=True)
class Transaction:
    """
    Transaction request, and the handle an adapter returns from ``begin()``.

    Adapters return the request amended with their own connection name.
    """

    connection: str | None = None
    isolation: IsolationLevel | None = None

    def with_connection(self, connection: str) -> Transaction:
        return replace(self, connection=connection)


__all__ = [
    "ExecutionScope",
    "IsolationLevel",
    "Options",
    "Transaction",
]
