"""Adapter registry.

Manifesto:
    Consumers address backends by connection name only. The registry maps
    names to adapter instances, is built once and is read-only afterwards,
    so concurrent lookups by independent calls are safe. It is always
    constructed explicitly and passed in; there is no process-wide
    registry.

Features:
    - ``AdapterRegistry(adapters, default=None)``
    - ``get(name)`` resolves a name, ``None`` resolves the default
    - Duplicate names and empty registries rejected at construction

Tags:
    conduit, database, registry

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from conduit.core.errors import InvalidArgumentError, LogicError

from .base import Adapter


class AdapterRegistry:
    """
    Registry of backend adapters keyed by connection name.

    The default adapter is the explicitly named one, or the first
    registered adapter.
    """

    def __init__(self, adapters: Iterable[Adapter], default: str | None = None):
        self._adapters: dict[str, Adapter] = {}

        for adapter in adapters:
            if adapter.name in self._adapters:
                raise LogicError(f'Adapter with name "{adapter.name}" is already registered.')
            self._adapters[adapter.name] = adapter

        if not self._adapters:
            raise LogicError("At least one adapter must be registered.")

        if default is not None and default not in self._adapters:
            raise InvalidArgumentError(
                f'Default connection "{default}" is not registered, '
                f'available connections: {", ".join(self._adapters)}.'
            )

        self._default = default if default is not None else next(iter(self._adapters))

    @property
    def default(self) -> str:
        """Name of the default connection."""
        return self._default

    def get(self, name: str | None = None) -> Adapter:
        """Get adapter by connection name (``None`` → default)."""
        name = name if name is not None else self._default
        try:
            return self._adapters[name]
        except KeyError:
            raise InvalidArgumentError(
                f'Connection "{name}" is not registered, '
                f'available connections: {", ".join(self._adapters)}.'
            ) from None

    def has(self, name: str) -> bool:
        return name in self._adapters

    def list_adapters(self) -> list[str]:
        """List registered connection names, in registration order."""
        return list(self._adapters)

    def __iter__(self) -> Iterator[Adapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


__all__ = [
    "AdapterRegistry",
]
