"""Parameter bags passed through the pipeline to adapters untouched.

Two flavours exist: :class:`Named` for ``:name`` placeholders and
:class:`Positional` for ``?`` placeholders. Each exposes ``values`` and
``types`` projections; a type is an optional hint the adapter may use to
bind the value (``None`` lets the driver decide).

Example:
    >>> params = Named().add("id", 42).add("status", "open", "str")
    >>> params.values
    {'id': 42, 'status': 'open'}
    >>> len(params)
    2

Tags:
    conduit, parameters, adapters
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from typing import Any

from conduit.core.errors import LogicError


class Parameters(ABC):
    """Common base of parameter bags; used as the configuration lookup type."""

    @property
    @abstractmethod
    def values(self) -> Any: ...

    @property
    @abstractmethod
    def types(self) -> Any: ...

    @abstractmethod
    def __len__(self) -> int: ...


class Named(Parameters):
    """Named parameters (``WHERE id = :id``)."""

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = {}
        self._types: dict[str, Any] = {}
        for name, value in (values or {}).items():
            self.add(name, value)

    def add(self, name: str, value: Any, type: Any = None) -> Named:
        """Add parameter; adding the same name twice is a LogicError."""
        if name in self._values:
            raise LogicError(f'Parameter "{name}" is already defined.')
        self._values[name] = value
        self._types[name] = type
        return self

    def set(self, name: str, value: Any, type: Any = None) -> Named:
        """Add or overwrite parameter."""
        self._values[name] = value
        self._types[name] = type
        return self

    def remove(self, name: str) -> Named:
        self._values.pop(name, None)
        self._types.pop(name, None)
        return self

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    @property
    def types(self) -> dict[str, Any]:
        return dict(self._types)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __repr__(self) -> str:
        return f"Named({self._values!r})"


class Positional(Parameters):
    """Positional parameters (``WHERE id = ?``)."""

    def __init__(self, *values: Any):
        self._values: list[Any] = []
        self._types: list[Any] = []
        for value in values:
            self.add(value)

    def add(self, value: Any, type: Any = None) -> Positional:
        self._values.append(value)
        self._types.append(type)
        return self

    @property
    def values(self) -> list[Any]:
        return list(self._values)

    @property
    def types(self) -> list[Any]:
        return list(self._types)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __repr__(self) -> str:
        return f"Positional{tuple(self._values)!r}"


__all__ = [
    "Parameters",
    "Named",
    "Positional",
]
