"""
Structured logging for conduit.

Middlewares, the transaction orchestrator and the SQLAlchemy adapter emit
snake_case events with key/value fields through structlog. Applications
configure output once at startup; library code only ever calls
:func:`get_logger`.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="orders")

        processors
          TimeStamper(iso)           optional
          merge_contextvars          fields bound by LogContext
          add_log_level, add_logger_name
          service name               "service.name"
          ECS renaming               "@timestamp", "log.level" (JSON only)
          JSONRenderer | ConsoleRenderer

        with LogContext(transaction="monthly_report", transaction_depth=1):
            logger.debug("transaction_commit", connection="primary")
            # -> {..., "transaction": "monthly_report", "transaction_depth": 1}

Examples:
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> get_logger(__name__).debug("cache_hit", key="posts:recent")

Tags:
    conduit, logging, structlog, ecs

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service_name = "conduit"


def _service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def _ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename structlog's timestamp/level keys to their ECS names."""
    for key, ecs_key in (("timestamp", "@timestamp"), ("level", "log.level")):
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def resolve_level(level: str | int) -> int:
    """``"warning"`` / ``logging.WARNING`` → ``logging.WARNING``.

    Raises:
        ValueError: unknown level name
    """
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    service: str = "conduit",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog output for the process.

    Args:
        level: Minimum level to emit
        json_format: JSON lines when true, console when false, JSON unless
            stdout is a terminal when ``None``
        service: Value of the ``service.name`` field
        add_timestamp: Add an ISO timestamp to every event
    """
    global _service_name
    _service_name = service

    numeric = resolve_level(level)
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _service_metadata,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    renderer: Processor
    if json_format:
        processors.append(_ecs_fields)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


class LogContext:
    """Bind fields to every event logged inside the ``with`` block.

    Values bound by an enclosing ``LogContext`` are restored on exit, so
    contexts nest.
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._fields)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "configure_logging",
    "get_logger",
    "resolve_level",
    "LogContext",
]
