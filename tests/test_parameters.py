"""Tests for treeflow.parameters: declarations, parsing and layering."""

from __future__ import annotations

import re

import pytest

from treeflow.errors import ConfigurationError
from treeflow.parameters import Parameter, ParameterContainer


class Base(ParameterContainer):
    parameters = (
        Parameter("count", 1, "how many", constraint=lambda v: v > 0),
        Parameter("mode", "fast", constraint=("fast", "slow")),
    )

    def __init__(self, config):
        self.options = self.resolve_parameters(config)


class Child(Base):
    parameters = (
        Parameter("mode", "slow", constraint=("fast", "slow")),
        Parameter("code", "", constraint=r"[A-Z]{0,3}"),
    )


# ═══════════════════════════════════════════════════════════════════
#  Parameter parsing
# ═══════════════════════════════════════════════════════════════════


class TestParameterParse:
    """Conversion to the declared type and constraint checks."""

    @pytest.mark.parametrize("raw,expected", [("true", True), ("No", False), ("1", True), (True, True)])
    def test_bool(self, raw, expected):
        assert Parameter("flag", False).parse(raw) is expected

    def test_bool_rejects_garbage(self):
        with pytest.raises(ConfigurationError, match="expects bool"):
            Parameter("flag", False).parse("maybe")

    def test_numbers(self):
        assert Parameter("n", 0).parse("42") == 42
        assert Parameter("n", 0).parse(3.0) == 3
        assert Parameter("x", 1.5).parse("2") == 2.0
        assert Parameter("x", 1.5).parse(2) == 2.0

    def test_number_rejects_bool(self):
        with pytest.raises(ConfigurationError, match="expects a number"):
            Parameter("n", 0).parse(True)

    def test_list_from_string(self):
        assert Parameter("names", []).parse("a, b,,c") == ["a", "b", "c"]

    def test_untyped_passes_through(self):
        value = object()
        assert Parameter("any").parse(value) is value

    def test_allowed_values_case_insensitive(self):
        p = Parameter("kind", "MD5", constraint=("MD5", "SHA1"))
        assert p.parse("sha1") == "sha1"
        with pytest.raises(ConfigurationError, match="not in MD5, SHA1"):
            p.parse("CRC32")

    def test_regex_constraint(self):
        p = Parameter("code", "", constraint=re.compile(r"\d+"))
        assert p.parse("123") == "123"
        with pytest.raises(ConfigurationError, match="does not match"):
            p.parse("12a")

    def test_predicate_constraint(self):
        p = Parameter("count", 1, constraint=lambda v: v > 0)
        with pytest.raises(ConfigurationError, match="not allowed"):
            p.parse(0)

    def test_none_skips_checks(self):
        assert Parameter("count", 1, constraint=lambda v: v > 0).parse(None) is None


# ═══════════════════════════════════════════════════════════════════
#  Containers
# ═══════════════════════════════════════════════════════════════════


class TestParameterContainer:
    """Declarations merged along the class hierarchy and value layering."""

    def test_merged_declarations(self):
        assert list(Child.parameter_defs) == ["count", "mode", "code"]
        assert list(Base.parameter_defs) == ["count", "mode"]

    def test_redeclared_default(self):
        assert Base.default_options()["mode"] == "fast"
        assert Child.default_options()["mode"] == "slow"

    def test_defaults_are_copied(self):
        class WithList(ParameterContainer):
            parameters = (Parameter("names", ["a"]),)

        first = WithList.default_options()
        first["names"].append("b")
        assert WithList.default_options()["names"] == ["a"]

    def test_layering(self):
        options = Base.resolve_parameters({
            "name": "x",
            "options": {"count": 2, "mode": "slow"},
            "parameters": {"count": 3},
            "mode": "fast",
        })
        assert options["count"] == 3
        assert options["mode"] == "fast"
        assert "name" not in options

    def test_sibling_key_beats_block(self):
        options = Base.resolve_parameters({"parameters": {"count": 3}, "count": "7"})
        assert options["count"] == 7

    def test_undeclared_keys_kept(self):
        options = Base.resolve_parameters({"extra": "value"})
        assert options["extra"] == "value"

    def test_invalid_value_raises(self):
        with pytest.raises(ConfigurationError):
            Base.resolve_parameters({"mode": "medium"})

    def test_block_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="'options' must be a mapping"):
            Base.resolve_parameters({"options": ["count"]})

    def test_set_parameter(self):
        obj = Child({})
        assert obj.set_parameter("count", "5") == 5
        assert obj.parameter("count") == 5
        assert obj.parameter("missing", "dflt") == "dflt"

    def test_set_unknown_parameter(self):
        obj = Child({})
        with pytest.raises(ConfigurationError, match="Unknown parameter 'colour'"):
            obj.set_parameter("colour", "red")

    def test_set_parameter_checks_constraint(self):
        obj = Child({})
        with pytest.raises(ConfigurationError):
            obj.set_parameter("code", "toolong")
