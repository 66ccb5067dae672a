"""Tests for conduit.core.logging."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from conduit.core.logging import LogContext, configure_logging, get_logger, resolve_level


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def records(caplog):
    """Rendered JSON payloads of every record emitted through stdlib logging."""
    caplog.set_level(logging.DEBUG)
    return lambda: [json.loads(record.getMessage()) for record in caplog.records]


class TestResolveLevel:
    def test_names(self):
        assert resolve_level("warning") == logging.WARNING
        assert resolve_level("DEBUG") == logging.DEBUG

    def test_numeric_passthrough(self):
        assert resolve_level(logging.ERROR) == logging.ERROR

    def test_unknown(self):
        with pytest.raises(ValueError):
            resolve_level("loud")


class TestConfigureLogging:
    def test_json_output(self, records):
        """JSON renderer emits ECS-compatible field names."""
        configure_logging(level="DEBUG", json_format=True, service="orders")
        get_logger("conduit.test").info("transaction_begin", connection="primary")

        (record,) = records()
        assert record["event"] == "transaction_begin"
        assert record["connection"] == "primary"
        assert record["service.name"] == "orders"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_level_filtering(self, records):
        configure_logging(level="WARNING", json_format=True)
        get_logger("conduit.test").debug("cache_hit", key="k")
        assert records() == []

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging(level="loud")


class TestLogContext:
    def test_fields_bound_inside_block(self, records):
        configure_logging(level="INFO", json_format=True)
        with LogContext(transaction="report"):
            get_logger("conduit.test").info("query_started")
        get_logger("conduit.test").info("query_finished")

        inside, outside = records()
        assert inside["transaction"] == "report"
        assert "transaction" not in outside

    def test_nested_contexts_restore_outer_values(self):
        with LogContext(transaction="outer", transaction_depth=1):
            with LogContext(transaction="inner", transaction_depth=2):
                assert structlog.contextvars.get_contextvars() == {
                    "transaction": "inner",
                    "transaction_depth": 2,
                }
            assert structlog.contextvars.get_contextvars() == {
                "transaction": "outer",
                "transaction_depth": 1,
            }
        assert structlog.contextvars.get_contextvars() == {}
