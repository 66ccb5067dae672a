"""Tests for conduit.core.adapters.parameters."""

import pytest

from conduit.core.adapters import Named, Parameters, Positional
from conduit.core.errors import LogicError


class TestNamed:
    def test_values_and_types(self):
        params = Named({"id": 1}).add("status", "open", "str")
        assert params.values == {"id": 1, "status": "open"}
        assert params.types == {"id": None, "status": "str"}
        assert len(params) == 2
        assert list(params) == ["id", "status"]

    def test_duplicate_name(self):
        with pytest.raises(LogicError):
            Named({"id": 1}).add("id", 2)

    def test_set_overwrites(self):
        assert Named({"id": 1}).set("id", 2).values == {"id": 2}

    def test_remove(self):
        assert len(Named({"id": 1}).remove("id")) == 0

    def test_projections_are_copies(self):
        params = Named({"id": 1})
        params.values["id"] = 99
        assert params.values == {"id": 1}


class TestPositional:
    def test_values_and_types(self):
        params = Positional(1, "a").add(3.5, "float")
        assert params.values == [1, "a", 3.5]
        assert params.types == [None, None, "float"]
        assert len(params) == 3


class TestParametersBase:
    def test_abstract(self):
        with pytest.raises(TypeError):
            Parameters()

    def test_incomplete_subclass(self):
        class ValuesOnly(Parameters):
            @property
            def values(self):
                return {}

        with pytest.raises(TypeError):
            ValuesOnly()
