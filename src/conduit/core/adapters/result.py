"""
Buffered query result.

Manifesto:
    A query result is read exactly once. Every extraction method (scalar,
    vector, record, all, iteration) consumes the result and closes it, so
    that code which accidentally reads a result twice fails loudly instead
    of silently reading an exhausted cursor.

    Results which may be cached declare it by implementing
    :class:`CacheableResult`: ``snapshot()`` produces a fresh, unconsumed
    copy which can be stored and handed out again on every cache hit.

Features:
    - **scalar(*default):** first field of the single record
    - **vector(*default):** first field of every record
    - **record(*default):** the single record
    - **all() / iteration:** every record
    - **free() / closed:** explicit release, one-shot semantics

Examples:
    >>> result = Result("primary", [{"id": 1, "title": "Foo"}])
    >>> result.scalar()
    1
    >>> result.closed
    True

Tags:
    conduit, result-set, caching, adapters

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from conduit.core.errors import (
    InvalidArgumentError,
    NonUniqueResultError,
    NoResultError,
    ResultClosedError,
)


class CacheableResult(ABC):
    """Capability marker: result can be stored in a cache."""

    @abstractmethod
    def snapshot(self) -> CacheableResult:
        """Return an unconsumed, self-contained copy of this result."""
        ...


def _single_default(default: tuple[Any, ...]) -> tuple[bool, Any]:
    if len(default) > 1:
        raise InvalidArgumentError(
            f"Expected at most one default value, {len(default)} given."
        )
    if default:
        return True, default[0]
    return False, None


class Result(CacheableResult):
    """Fully buffered result set produced by a query on one connection."""

    def __init__(self, connection: str, rows: Iterable[Mapping[str, Any]]):
        self.connection = connection
        self._rows: list[dict[str, Any]] | None = [dict(row) for row in rows]

    @property
    def closed(self) -> bool:
        return self._rows is None

    def _consume(self) -> list[dict[str, Any]]:
        if self._rows is None:
            raise ResultClosedError(
                f'Result set from connection "{self.connection}" is closed.'
            )
        rows, self._rows = self._rows, None
        return rows

    def scalar(self, *default: Any) -> Any:
        """First field of the single record.

        Raises:
            NoResultError: no record and no default given
            NonUniqueResultError: more than one record
        """
        found, record = self._single(default)
        if not found:
            return record
        return next(iter(record.values()))

    def vector(self, *default: Any) -> Any:
        """First field of every record; default when there are none."""
        has_default, fallback = _single_default(default)
        rows = self._consume()

        if not rows and has_default:
            return fallback

        return [next(iter(row.values())) for row in rows]

    def record(self, *default: Any) -> Any:
        """The single record.

        Raises:
            NoResultError: no record and no default given
            NonUniqueResultError: more than one record
        """
        _, record = self._single(default)
        return record

    def _single(self, default: tuple[Any, ...]) -> tuple[bool, Any]:
        has_default, fallback = _single_default(default)
        rows = self._consume()

        if not rows:
            if has_default:
                return False, fallback
            raise NoResultError("Expected exactly one record, none retrieved.")

        if len(rows) > 1:
            raise NonUniqueResultError(
                f"Expected exactly one record, {len(rows)} retrieved."
            )

        return True, rows[0]

    def all(self) -> list[dict[str, Any]]:
        return self._consume()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self._consume())

    def free(self) -> None:
        self._rows = None

    def snapshot(self) -> Result:
        if self._rows is None:
            raise ResultClosedError(
                f'Unable to snapshot result set from connection "{self.connection}", result set is closed.'
            )
        return Result(self.connection, [dict(row) for row in self._rows])

    def __repr__(self) -> str:
        state = "closed" if self._rows is None else f"{len(self._rows)} rows"
        return f"Result(connection={self.connection!r}, {state})"


__all__ = [
    "CacheableResult",
    "Result",
]
