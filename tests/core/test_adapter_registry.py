"""Tests for AdapterRegistry."""

import pytest

from conduit.core.adapters import AdapterRegistry
from conduit.core.errors import InvalidArgumentError, LogicError


class TestAdapterRegistry:
    def test_default_is_first(self, primary, secondary):
        registry = AdapterRegistry([primary, secondary])
        assert registry.default == "primary"
        assert registry.get() is primary

    def test_explicit_default(self, primary, secondary):
        registry = AdapterRegistry([primary, secondary], default="secondary")
        assert registry.default == "secondary"
        assert registry.get(None) is secondary

    def test_unknown_default(self, primary):
        with pytest.raises(InvalidArgumentError):
            AdapterRegistry([primary], default="missing")

    def test_duplicate_names(self, make_adapter):
        with pytest.raises(LogicError):
            AdapterRegistry([make_adapter("a"), make_adapter("a")])

    def test_empty(self):
        with pytest.raises(LogicError):
            AdapterRegistry([])

    def test_lookup(self, registry, secondary):
        assert registry.get("secondary") is secondary
        assert registry.has("secondary") is True
        assert registry.has("missing") is False
        assert registry.list_adapters() == ["primary", "secondary"]
        assert len(registry) == 2

    def test_unknown_connection(self, registry):
        with pytest.raises(InvalidArgumentError, match="missing"):
            registry.get("missing")

    def test_adapter_requires_name(self, make_adapter):
        with pytest.raises(ValueError):
            make_adapter("")
