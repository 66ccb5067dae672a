"""
Cache-aside for query and transaction results.

Manifesto:
    Expensive reads are cached by the caller's decision, not by a global
    policy: a call carries a :class:`CacheIdentity` (or an object which can
    produce one, such as repository criteria) naming the cache key and a
    resolver which decides, after seeing the result, whether and how it is
    stored. Statements are never cached.

Architecture:
    ::

        query(source, CacheIdentity("posts:recent", resolver))
            │
            ▼
        item = pool.get_item("posts:recent")
            hit  → return stored snapshot (rest of chain skipped)
            miss → result = next(...)
                   resolver(item, result) is False → pool.delete_item(key)
                   otherwise                      → pool.save(item)

        CacheMiddleware.invalidate(Invalidate.for_tags("posts"))

Features:
    - **CacheIdentity.static():** fixed TTL and tags resolver
    - **CacheIdentifiable:** objects producing their own identity
    - **Invalidate:** keys and/or tags to evict
    - **Snapshots:** cached results are stored as ``snapshot()`` copies, so
      every hit hands out a fresh, unconsumed result

Examples:
    >>> identity = CacheIdentity.static("user:42", tags=["users"], ttl=300)
    >>> executor.query("SELECT * FROM users WHERE id = 42", identity).record()

Guardrails:
    ❌ DON'T: Cache a statement (LogicError)
    ✅ DO: Invalidate affected keys/tags after the statement succeeds

    ❌ DON'T: Consume the result inside a resolver
    ✅ DO: Only inspect it, the caller still reads it afterwards

Tags:
    conduit, cache, cache-aside, middleware, invalidation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from conduit.core.adapters.result import CacheableResult, Result
from conduit.core.cache import CacheBackend, CacheItem, CachePool
from conduit.core.errors import InvalidArgumentError, LogicError
from conduit.core.logging import get_logger

from .context import ExecutionContext
from .middleware import (
    Middleware,
    Next,
    Operation,
    QueryNext,
    StatementNext,
    Transactional,
    TransactionalNext,
)

logger = get_logger(__name__)

Resolver = Callable[[CacheItem, Any], "bool | None"]


def _persist(item: CacheItem, result: Any) -> None:
    return None


@dataclass(frozen=True)
class CacheIdentity:
    """Cache key plus the resolver deciding whether and how to store a result.

    The resolver returns ``False`` to skip persisting (the cache slot is
    deleted); any other return value persists the slot.
    """

    key: str
    resolver: Resolver = field(default=_persist, compare=False)

    def __post_init__(self) -> None:
        if not self.key:
            raise InvalidArgumentError("Cache key must be a non-empty string.")

    @classmethod
    def static(
        cls,
        key: str,
        tags: Iterable[str] | str | None = None,
        ttl: int | None = None,
    ) -> CacheIdentity:
        """Identity which always persists, with fixed TTL (seconds) and tags."""
        tags = [tags] if isinstance(tags, str) else list(tags or [])

        def resolver(item: CacheItem, result: Any) -> None:
            item.expires_after(ttl)
            if tags:
                item.tag(tags)

        return cls(key, resolver)


class CacheIdentifiable(ABC):
    """Object which knows the cache identity of the results it selects."""

    @abstractmethod
    def cache_identity(self) -> CacheIdentity:
        ...


def _as_tuple(value: Iterable[str] | str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class Invalidate:
    """Keys and tags to evict from the cache."""

    keys: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", _as_tuple(self.keys))
        object.__setattr__(self, "tags", _as_tuple(self.tags))

    @classmethod
    def for_keys(cls, keys: Iterable[str] | str) -> Invalidate:
        return cls(keys=_as_tuple(keys))

    @classmethod
    def for_tags(cls, tags: Iterable[str] | str) -> Invalidate:
        return cls(tags=_as_tuple(tags))


class CacheMiddleware(Middleware):
    """Serves query and transaction results from cache when an identity is given."""

    def __init__(self, cache: CachePool | CacheBackend | None = None):
        self._pool = cache if isinstance(cache, CachePool) else CachePool(cache)

    @property
    def pool(self) -> CachePool:
        return self._pool

    def query(self, source: str, context: ExecutionContext, next: QueryNext) -> Result:
        return self._cached(Operation.QUERY, source, context, next)

    def statement(self, source: str, context: ExecutionContext, next: StatementNext) -> int:
        if context.peek(CacheIdentity) is not None or context.peek(CacheIdentifiable) is not None:
            raise LogicError(f'Result of statement "{source}" can not be cached.')
        return next(source, context)

    def transactional(
        self,
        function: Transactional,
        context: ExecutionContext,
        next: TransactionalNext,
    ) -> Any:
        return self._cached(Operation.TRANSACTIONAL, function, context, next)

    def invalidate(self, invalidate: Invalidate) -> None:
        """Delete keys outright, then invalidate tags.

        Raises:
            UnsupportedError: tags given and the store does not support them
        """
        if invalidate.keys:
            self._pool.delete_items(invalidate.keys)

        if invalidate.tags:
            self._pool.invalidate_tags(invalidate.tags)

        logger.debug("cache_invalidated", keys=list(invalidate.keys), tags=list(invalidate.tags))

    def _cached(self, operation: Operation, subject: Any, context: ExecutionContext, next: Next) -> Any:
        identity = context.require(CacheIdentity) or context.require(CacheIdentifiable)

        if identity is None:
            return next(subject, context)

        if isinstance(identity, CacheIdentifiable):
            identity = identity.cache_identity()

        item = self._pool.get_item(identity.key)

        if item.is_hit:
            logger.debug("cache_hit", operation=operation.value, key=identity.key)
            stored = item.get()
            return stored.snapshot() if isinstance(stored, CacheableResult) else stored

        result = next(subject, context)

        if isinstance(result, CacheableResult):
            item.set(result.snapshot())
        elif operation is Operation.QUERY:
            raise LogicError(
                f'Result of type "{type(result).__qualname__}" of query "{context.source}" is not cacheable.'
            )
        else:
            item.set(result)

        if identity.resolver(item, result) is False:
            self._pool.delete_item(identity.key)
            logger.debug("cache_skipped", operation=operation.value, key=identity.key)
            return result

        self._pool.save(item)
        logger.debug("cache_stored", operation=operation.value, key=identity.key)
        return result


__all__ = [
    "CacheIdentity",
    "CacheIdentifiable",
    "Invalidate",
    "CacheMiddleware",
    "Resolver",
]
