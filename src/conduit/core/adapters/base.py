"""Backend adapter base class.

Manifesto:
    The execution pipeline never talks to a database driver directly. An
    adapter owns exactly one named backend connection and implements the
    narrow contract the pipeline relies on: transaction state changes and
    query/statement execution. Driver exceptions are translated into the
    conduit error taxonomy at this boundary, with connection name and
    source attached, and are never re-wrapped by the pipeline.

Features:
    - Abstract ``begin()``, ``commit()``, ``rollback()``
    - Abstract ``query()`` returning a :class:`Result`
    - Abstract ``statement()`` returning the affected row count

Tags:
    conduit, database, abstract-base, adapter-pattern

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .parameters import Parameters
from .result import Result
from .types import Options, Transaction


class Adapter(ABC):
    """
    Abstract base class for backend adapters.

    Adapters are expected to serialize ``begin/commit/rollback`` against
    their own single underlying connection.
    """

    def __init__(self, name: str):
        if not name:
            raise ValueError("Adapter name must be a non-empty string.")
        self._name = name

    @property
    def name(self) -> str:
        """Connection name, unique within a registry."""
        return self._name

    @abstractmethod
    def begin(self, transaction: Transaction | None = None) -> Transaction:
        """Begin transaction, return the handle amended with this connection name."""
        ...

    @abstractmethod
    def commit(self, transaction: Transaction) -> None:
        """Commit transaction started by :meth:`begin`."""
        ...

    @abstractmethod
    def rollback(self, transaction: Transaction) -> None:
        """Roll back transaction started by :meth:`begin`."""
        ...

    @abstractmethod
    def query(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> Result:
        """Execute query and return its result set."""
        ...

    @abstractmethod
    def statement(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> int:
        """Execute statement and return the number of affected rows."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r})"


__all__ = [
    "Adapter",
]
