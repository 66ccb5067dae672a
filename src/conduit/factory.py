"""
Factory functions that assemble the execution pipeline from settings.

Manifesto:
    Wiring middlewares by hand is error prone: the order matters (cache
    before monitoring, retry outside replica fallback, the dispatch stage
    last) and every policy needs its defaults. ``create_executor()`` builds
    the canonical stack from one validated :class:`ConduitSettings` object.
    Optional backends (``redis``) are only imported when selected.

Architecture:
    ::

        create_executor([SQLAlchemyAdapter("primary", engine), ...], settings)
            │
            ▼
        AdapterRegistry(adapters, default=settings.default_connection)
        MiddlewareChain([
            CacheMiddleware(CachePool(create_cache_backend(settings))),
            SlowExecutionMiddleware(level, threshold, always),
            RetryMiddleware(),
            ReplicaMiddleware(primary, replicas)   # only when configured
            ExecutorMiddleware(registry),
        ])
            │
            ▼
        Executor

Features:
    - ``create_executor()`` -- canonical middleware stack + registry
    - ``create_cache_backend()`` -- Null / InMemory / Redis from ``cache_url``
    - ``configure_logging_from_settings()`` -- ``CONDUIT_LOG_LEVEL`` / ``CONDUIT_LOG_JSON``

Examples:
    >>> executor = create_executor([SQLAlchemyAdapter("primary", engine)])
    >>> executor.middlewares.find(CacheMiddleware).invalidate(Invalidate.for_tags("users"))

Tags:
    conduit, configuration, factory-pattern, lazy-imports, redis

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from conduit.core.adapters.base import Adapter
from conduit.core.adapters.registry import AdapterRegistry
from conduit.core.cache import CacheBackend, CachePool, InMemoryCache, NullCache, RedisCache
from conduit.core.errors import InvalidArgumentError
from conduit.core.logging import configure_logging, get_logger
from conduit.core.settings import ConduitSettings, get_settings
from conduit.execution.cache import CacheMiddleware
from conduit.execution.executor import Executor, ExecutorMiddleware
from conduit.execution.middleware import Middleware
from conduit.execution.monitor import SlowExecutionMiddleware
from conduit.execution.replica import FallbackStrategy, ReplicaMiddleware
from conduit.execution.retry import RetryMiddleware

_log = get_logger(__name__)


def create_cache_backend(settings: ConduitSettings) -> CacheBackend:
    """Create a cache backend from *settings.cache_url*.

    ``None`` or ``"null"`` disables caching, ``"memory"`` selects the
    in-process LRU cache and ``redis://`` / ``rediss://`` URLs select Redis.
    """
    url = settings.cache_url
    ttl = settings.cache_default_ttl_seconds

    match url:
        case None | "null" | "":
            return NullCache()
        case "memory":
            return InMemoryCache(default_ttl_seconds=ttl)
        case str() if url.startswith(("redis://", "rediss://", "unix://")):
            return RedisCache(url, default_ttl_seconds=ttl)
        case _:
            raise InvalidArgumentError(f"Unsupported cache URL: {url!r}")


def create_executor(
    adapters: AdapterRegistry | Iterable[Adapter],
    settings: ConduitSettings | None = None,
    cache: CachePool | CacheBackend | None = None,
    logger: Any = None,
) -> Executor:
    """Create an :class:`Executor` with the canonical middleware stack.

    Args:
        adapters: Registry, or adapters to register (first is the default
            unless ``settings.default_connection`` names another one)
        settings: Pipeline settings, :func:`get_settings` when omitted
        cache: Cache pool or backend, built from settings when omitted
        logger: Logger for slow execution records, module logger when omitted
    """
    settings = settings if settings is not None else get_settings()

    if isinstance(adapters, AdapterRegistry):
        registry = adapters
    else:
        registry = AdapterRegistry(adapters, default=settings.default_connection)

    if cache is None:
        cache = create_cache_backend(settings)

    pool = cache if isinstance(cache, CachePool) else CachePool(
        cache, default_ttl_seconds=settings.cache_default_ttl_seconds
    )

    middlewares: list[Middleware] = [
        CacheMiddleware(pool),
        SlowExecutionMiddleware(
            logger=logger,
            level=settings.slow_log_level,
            threshold=settings.slow_threshold_ms,
            always=settings.slow_always,
        ),
        RetryMiddleware(),
    ]

    if settings.replicas_enabled:
        middlewares.append(
            ReplicaMiddleware(
                registry,
                settings.replicas,
                settings.replica_primary,
                disabled=settings.replicas_disabled,
                fallback=FallbackStrategy(settings.replica_fallback),
            )
        )

    middlewares.append(ExecutorMiddleware(registry))

    _log.debug(
        "executor_created",
        connections=registry.list_adapters(),
        default=registry.default,
        middlewares=[type(m).__name__ for m in middlewares],
    )

    return Executor(middlewares, registry)


def configure_logging_from_settings(settings: ConduitSettings | None = None, service: str = "conduit") -> None:
    """Configure structlog from ``log_level`` and ``log_json`` settings."""
    settings = settings if settings is not None else get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json, service=service)


__all__ = [
    "create_executor",
    "create_cache_backend",
    "configure_logging_from_settings",
]
