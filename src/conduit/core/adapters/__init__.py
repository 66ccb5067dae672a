"""Backend adapters -- the narrow contract the execution pipeline relies on.

Manifesto:
    The pipeline composes policies around backend calls without knowing
    which driver sits underneath. Everything it needs from a backend is
    defined here: the adapter contract, the options and transaction
    requests it passes down, parameter bags it passes through untouched,
    and the result type it hands back.

Architecture::

    Adapter (base.py)              Abstract begin/commit/rollback/query/statement
        |-- SQLAlchemyAdapter      SQLAlchemy 2.x connection (SAVEPOINT nesting)

    AdapterRegistry (registry.py)  connection name -> adapter, default resolution
    Options, Transaction (types.py)
    Named, Positional (parameters.py)
    Result, CacheableResult (result.py)

Modules
-------
base            Abstract Adapter base class
types           Options, Transaction, ExecutionScope, IsolationLevel
parameters      Named / Positional parameter bags
result          Buffered, one-shot, cacheable Result
registry        AdapterRegistry
sqlalchemy      SQLAlchemy adapter + SQLite engine helper

Tags:
    conduit, database, adapters, registry-pattern, sqlalchemy

Doc-Types:
    package-overview, module-index
"""

from .base import Adapter
from .parameters import Named, Parameters, Positional
from .registry import AdapterRegistry
from .result import CacheableResult, Result
from .sqlalchemy import SQLAlchemyAdapter, create_sqlite_engine
from .types import ExecutionScope, IsolationLevel, Options, Transaction

__all__ = [
    # Types
    "ExecutionScope",
    "IsolationLevel",
    "Options",
    "Transaction",
    # Parameters / results
    "Parameters",
    "Named",
    "Positional",
    "CacheableResult",
    "Result",
    # Base class
    "Adapter",
    # Implementations
    "SQLAlchemyAdapter",
    "create_sqlite_engine",
    # Registry
    "AdapterRegistry",
]
