"""
Structured error types for the conduit execution pipeline.

Every failure raised by the pipeline, by a backend adapter or by a result
set extends :class:`ConduitError`. Errors carry a category, an explicit
retry flag, structured context (connection name, executed source) and the
chained driver exception, so that policy middlewares can decide what to do
with a failure by its *kind*, never by parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure kind
    - **Explicit Retry Semantics:** Deadlocks and lock wait timeouts are
      retryable, logic errors never are
    - **Rich Context:** Connection and source travel with the error
    - **Error Chaining:** Driver exceptions are preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ConduitError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  DatabaseConnectionError  DriverError         TransactionError  │
        │  (CONNECTION)             (DRIVER)            (TRANSACTION)     │
        │                             │                    │              │
        │                           DriverSyntaxError   BeginTransaction  │
        │                           DeadlockError *     CommitTransaction │
        │                           LockWaitTimeout *   RollbackTransac.  │
        │                                                  │              │
        │                                        TransactionScopeRollback │
        │                                                                 │
        │  IsolationError   LogicError   UnsupportedError                 │
        │  QueryRuntimeError  InvalidArgumentError                        │
        │  NoResultError  NonUniqueResultError  ResultClosedError         │
        │                                                                 │
        │  * retryable by default                                         │
        └─────────────────────────────────────────────────────────────────┘

Features:
    - **ErrorCategory enum:** Classification for logging and routing
    - **ErrorContext dataclass:** Connection, source, isolation, metadata
    - **Catcher:** Decides whether a failure is of a configured kind
    - **TransactionScopeRollbackError:** Aggregates a primary failure with
      every failure raised while rolling back

Examples:
    >>> error = DeadlockError("Deadlock detected")
    >>> error.retryable
    True
    >>> error.with_context(connection="primary").context.connection
    'primary'

Guardrails:
    ❌ DON'T: Retry a LogicError - it signals misconfiguration
    ✅ DO: Fix the pipeline configuration named in the message

    ❌ DON'T: Swallow a TransactionScopeRollbackError
    ✅ DO: Treat it as fatal for the affected connections

Tags:
    error-handling, exception-hierarchy, retry-logic, transactions,
    conduit, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories mirror the failure kinds the pipeline distinguishes:

    - **Backend (possibly transient):** CONNECTION, DRIVER, TRANSACTION, ISOLATION
    - **Programmer misuse (never retryable):** LOGIC, UNSUPPORTED, INVALID
    - **Result handling:** RESULT
    - **Uncategorized:** RUNTIME
    """

    CONNECTION = "CONNECTION"     # Backend unreachable
    DRIVER = "DRIVER"             # Opaque backend failure, syntax, deadlock
    TRANSACTION = "TRANSACTION"   # Begin/commit/rollback failed
    ISOLATION = "ISOLATION"       # Isolation level read/write failed

    LOGIC = "LOGIC"               # Pipeline misuse
    UNSUPPORTED = "UNSUPPORTED"   # Operation not available on backend
    INVALID = "INVALID"           # Invalid argument/configuration value

    RESULT = "RESULT"             # Result set extraction
    RUNTIME = "RUNTIME"           # Uncategorized


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Adapters fill ``connection`` and ``source`` at the adapter boundary so
    that the pipeline never has to re-wrap a failure to make it diagnosable.

    Attributes:
        connection: Name of the connection on which the failure occurred
        source: Query or statement text being executed
        isolation: Requested isolation level, if relevant
        metadata: Additional key-value pairs
    """

    connection: str | None = None
    source: str | None = None
    isolation: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["connection", "source", "isolation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConduitError(Exception):
    """
    Base exception for all conduit errors.

    All ConduitError instances carry:

    - **category:** ErrorCategory for classification
    - **retryable:** Whether repeating the call may succeed
    - **context:** ErrorContext with connection/source metadata
    - **cause:** Underlying exception, also set as ``__cause__``

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = ConduitError("Something went wrong")
        >>> error.category
        <ErrorCategory.RUNTIME: 'RUNTIME'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.RUNTIME
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConduitError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DriverError("Failed").with_context(connection="primary")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# BACKEND ERRORS (raised by adapters)
# =============================================================================


class DatabaseConnectionError(ConduitError):
    """Backend unreachable, or connection lost while executing."""

    default_category = ErrorCategory.CONNECTION


class DriverError(ConduitError):
    """Backend-level failure with no more specific wrapper."""

    default_category = ErrorCategory.DRIVER


class DriverSyntaxError(DriverError):
    """Malformed query or statement. Never retried."""


class DeadlockError(DriverError):
    """Deadlock detected by the backend."""

    default_retryable = True


class LockWaitTimeoutError(DriverError):
    """Lock could not be acquired in time."""

    default_retryable = True


class IsolationError(ConduitError):
    """Unable to read or change the transaction isolation level."""

    default_category = ErrorCategory.ISOLATION


# =============================================================================
# TRANSACTION ERRORS
# =============================================================================


class TransactionError(ConduitError):
    """Failed to change transaction state."""

    default_category = ErrorCategory.TRANSACTION


class BeginTransactionError(TransactionError):
    """Unable to begin transaction."""


class CommitTransactionError(TransactionError):
    """Unable to commit transaction."""


class RollbackTransactionError(TransactionError):
    """Unable to roll back transaction."""


class TransactionScopeRollbackError(RollbackTransactionError):
    """
    Rolling back one or more transactions of a transactional scope failed.

    Everything that could be rolled back has been rolled back before this
    error is raised. The primary failure (the one that triggered the
    rollback) is available as ``cause``; the failures raised by individual
    rollbacks are available in ``failures``, keyed by connection name.

    This error is fatal: consistency of the listed connections can no
    longer be trusted and it must not be retried or mitigated.
    """

    def __init__(
        self,
        message: str,
        cause: BaseException,
        failures: Mapping[str, BaseException],
    ):
        if not failures:
            raise InvalidArgumentError("At least one rollback failure is required.")

        super().__init__(
            message,
            cause=cause,
            context=ErrorContext(metadata={"connections": list(failures)}),
        )
        self.failures: dict[str, BaseException] = dict(failures)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["failures"] = {name: str(error) for name, error in self.failures.items()}
        return result


# =============================================================================
# PROGRAMMER ERRORS (never retryable)
# =============================================================================


class LogicError(ConduitError):
    """
    Pipeline misuse.

    Raised on double consumption of a configuration, unconsumed
    configurations at the terminal stage, scope violations, caching or
    replica routing of a statement and unsafe retry inside a transaction.
    Retry and replica middlewares never catch this error.
    """

    default_category = ErrorCategory.LOGIC


class InvalidArgumentError(ConduitError):
    """Invalid argument or configuration value."""

    default_category = ErrorCategory.INVALID


class UnsupportedError(ConduitError):
    """Operation not available on the configured backend."""

    default_category = ErrorCategory.UNSUPPORTED


class QueryRuntimeError(ConduitError):
    """Uncategorized failure."""


# =============================================================================
# RESULT ERRORS
# =============================================================================


class ResultError(ConduitError):
    """Result set extraction error."""

    default_category = ErrorCategory.RESULT


class NoResultError(ResultError):
    """Exactly one record expected, none retrieved."""


class NonUniqueResultError(ResultError):
    """Exactly one record expected, more retrieved."""


class ResultClosedError(ResultError):
    """Result set has already been consumed or freed."""


# =============================================================================
# UTILITIES
# =============================================================================


class Catcher:
    """
    Decide whether a failure is one of the configured kinds.

    Used by middlewares which act upon specific failures (retry, replica
    fallback). ``LogicError`` and ``TransactionScopeRollbackError`` are
    never catchable, whatever the configured kinds are.

    Example:
        >>> catcher = Catcher([DeadlockError, LockWaitTimeoutError])
        >>> catcher.catchable(DeadlockError("boom"))
        True
        >>> catcher.catchable(DriverSyntaxError("boom"))
        False
    """

    def __init__(self, catch: Iterable[type[BaseException]]):
        self._catch = tuple(catch)

    @property
    def types(self) -> tuple[type[BaseException], ...]:
        return self._catch

    def catchable(self, error: BaseException, chained: bool = False) -> bool:
        """Check if *error* (or, when ``chained``, any of its causes) is catchable."""
        if isinstance(error, (LogicError, TransactionScopeRollbackError)):
            return False

        if isinstance(error, self._catch):
            return True

        if not chained or error.__cause__ is None:
            return False

        return self.catchable(error.__cause__, chained)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ConduitError):
        return error.retryable
    return False


def describe_types(objects: Iterable[object]) -> str:
    """Render ``"A", "B"`` from the types of *objects*, for error messages."""
    return ", ".join(f'"{type(obj).__qualname__}"' for obj in objects)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConduitError",
    "DatabaseConnectionError",
    "DriverError",
    "DriverSyntaxError",
    "DeadlockError",
    "LockWaitTimeoutError",
    "IsolationError",
    "TransactionError",
    "BeginTransactionError",
    "CommitTransactionError",
    "RollbackTransactionError",
    "TransactionScopeRollbackError",
    "LogicError",
    "InvalidArgumentError",
    "UnsupportedError",
    "QueryRuntimeError",
    "ResultError",
    "NoResultError",
    "NonUniqueResultError",
    "ResultClosedError",
    "Catcher",
    "is_retryable",
    "describe_types",
]
