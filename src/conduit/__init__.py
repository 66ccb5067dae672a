"""
Conduit - query, statement and transaction execution pipeline.

Callers submit a query or statement together with typed configuration
objects; an ordered chain of middlewares (cache-aside, slow execution
monitoring, retry, replica routing) processes the call before the terminal
stage dispatches it to a named backend adapter. Transactions may span
several independent backends and commit or roll back as a unit.

Example:
    >>> from conduit import Named, Retry, SQLAlchemyAdapter, create_executor
    >>> executor = create_executor([SQLAlchemyAdapter("primary", engine)])
    >>> executor.query("SELECT * FROM users WHERE id = :id", Named({"id": 1}), Retry()).record()
"""

__version__ = "0.1.0"

from conduit.core.adapters import (
    Adapter,
    AdapterRegistry,
    ExecutionScope,
    IsolationLevel,
    Named,
    Options,
    Positional,
    Result,
    SQLAlchemyAdapter,
    Transaction,
)
from conduit.core.errors import ConduitError, LogicError, TransactionScopeRollbackError
from conduit.execution import (
    CacheIdentifiable,
    CacheIdentity,
    CacheMiddleware,
    Executor,
    FallbackStrategy,
    Invalidate,
    Middleware,
    Replica,
    Retry,
    ScopedExecutor,
    Slow,
)
from conduit.factory import configure_logging_from_settings, create_cache_backend, create_executor

__all__ = [
    "__version__",
    # Factory
    "create_executor",
    "create_cache_backend",
    "configure_logging_from_settings",
    # Executors
    "Executor",
    "ScopedExecutor",
    "Middleware",
    # Configurations
    "Options",
    "Transaction",
    "ExecutionScope",
    "IsolationLevel",
    "Named",
    "Positional",
    "Retry",
    "Replica",
    "FallbackStrategy",
    "CacheIdentity",
    "CacheIdentifiable",
    "Invalidate",
    "Slow",
    # Adapters
    "Adapter",
    "AdapterRegistry",
    "SQLAlchemyAdapter",
    "Result",
    "CacheMiddleware",
    # Errors
    "ConduitError",
    "LogicError",
    "TransactionScopeRollbackError",
]
