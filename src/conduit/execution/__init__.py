"""Execution pipeline -- context, middleware chain, transactions and policies.

Architecture::

    Executor (executor.py)
        │ query / statement / transactional
        ▼
    MiddlewareChain (middleware.py)
        CacheMiddleware (cache.py)
        SlowExecutionMiddleware (monitor.py)
        RetryMiddleware (retry.py)
        ReplicaMiddleware (replica.py)
        ExecutorMiddleware (executor.py)  ──▶ Adapter

    ExecutionContext (context.py)      per-call configurations, consumed once
    TransactionScope (scope.py)        open transactions per nesting level
    TransactionOrchestrator (transaction.py)

Tags:
    conduit, execution, middleware, transactions, package-overview

Doc-Types:
    package-overview, module-index
"""

from .cache import CacheIdentifiable, CacheIdentity, CacheMiddleware, Invalidate
from .context import ExecutionContext, execution_context, transaction_context
from .executor import Executor, ExecutorMiddleware
from .middleware import Middleware, MiddlewareChain, Operation, terminate
from .monitor import Slow, SlowExecutionMiddleware
from .replica import FallbackStrategy, Replica, ReplicaMiddleware
from .retry import Retry, RetryMiddleware
from .scope import TransactionScope, enforce_scope
from .transaction import BaseExecutor, ScopedExecutor, TransactionOrchestrator

__all__ = [
    # Context
    "ExecutionContext",
    "execution_context",
    "transaction_context",
    # Chain
    "Operation",
    "Middleware",
    "MiddlewareChain",
    "terminate",
    # Executors
    "BaseExecutor",
    "Executor",
    "ExecutorMiddleware",
    "ScopedExecutor",
    "TransactionOrchestrator",
    "TransactionScope",
    "enforce_scope",
    # Policies
    "Retry",
    "RetryMiddleware",
    "Replica",
    "ReplicaMiddleware",
    "FallbackStrategy",
    "CacheIdentity",
    "CacheIdentifiable",
    "CacheMiddleware",
    "Invalidate",
    "Slow",
    "SlowExecutionMiddleware",
]
