"""
Shared pytest fixtures for conduit tests.

This module provides:
- A recording in-memory adapter with scripted failures
- Registry and executor builders
- Settings cache isolation

Usage:
    def test_something(primary, make_executor):
        executor = make_executor([RetryMiddleware()])
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

import pytest

from conduit.core.adapters import Adapter, AdapterRegistry, Options, Parameters, Result, Transaction
from conduit.core.settings import clear_settings_cache
from conduit.execution import Executor, ExecutorMiddleware, Middleware


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Recording Adapter
# =============================================================================


class RecordingAdapter(Adapter):
    """In-memory adapter recording every call.

    Failures are scripted per method with :meth:`fail`; each call to that
    method pops and raises the next scripted failure.
    """

    def __init__(self, name: str, rows: Iterable[dict[str, Any]] | None = None, affected: int = 1):
        super().__init__(name)
        self.rows = list(rows) if rows is not None else [{"value": 1}]
        self.affected = affected
        self.calls: list[tuple[Any, ...]] = []
        self._failures: dict[str, list[BaseException]] = {}

    def fail(self, method: str, *errors: BaseException) -> RecordingAdapter:
        self._failures.setdefault(method, []).extend(errors)
        return self

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)

    def begin(self, transaction: Transaction | None = None) -> Transaction:
        handle = (transaction or Transaction()).with_connection(self.name)
        self._record("begin", handle)
        return handle

    def commit(self, transaction: Transaction) -> None:
        self._record("commit", transaction)

    def rollback(self, transaction: Transaction) -> None:
        self._record("rollback", transaction)

    def query(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> Result:
        self._record("query", source, parameters, options)
        return Result(self.name, self.rows)

    def statement(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> int:
        self._record("statement", source, parameters, options)
        return self.affected


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep CONDUIT_* variables of the host out of tests."""
    for key in list(os.environ):
        if key.startswith("CONDUIT_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def make_adapter() -> Callable[..., RecordingAdapter]:
    """Factory for recording adapters."""
    return RecordingAdapter


@pytest.fixture
def primary() -> RecordingAdapter:
    return RecordingAdapter("primary")


@pytest.fixture
def secondary() -> RecordingAdapter:
    return RecordingAdapter("secondary")


@pytest.fixture
def registry(primary: RecordingAdapter, secondary: RecordingAdapter) -> AdapterRegistry:
    return AdapterRegistry([primary, secondary])


@pytest.fixture
def make_executor(registry: AdapterRegistry) -> Callable[..., Executor]:
    """Build an executor: given middlewares followed by the dispatch stage."""

    def _make(middlewares: Sequence[Middleware] = (), target: AdapterRegistry | None = None) -> Executor:
        used = target if target is not None else registry
        return Executor([*middlewares, ExecutorMiddleware(used)], used)

    return _make


@pytest.fixture
def executor(make_executor: Callable[..., Executor]) -> Executor:
    return make_executor()
