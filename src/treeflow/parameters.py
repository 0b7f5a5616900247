"""Declared task parameters: defaults, descriptions, constraints and value layering."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping

from treeflow.errors import ConfigurationError

# Configuration keys that describe the task node itself rather than its options.
RESERVED_KEYS = frozenset({"name", "class", "tasks", "options", "parameters"})

_TRUE = {"true", "yes", "y", "on", "1"}
_FALSE = {"false", "no", "n", "off", "0", ""}


@dataclass(frozen=True)
class Parameter:
    """One named, typed, defaulted and optionally constrained value.

    *constraint* is either a collection of allowed values, a regular
    expression (string or compiled) the value must fully match, or a
    predicate returning ``True`` for acceptable values.
    """

    name: str
    default: Any = None
    description: str = ""
    constraint: Any = None
    datatype: type | None = None

    @property
    def type(self) -> type | None:
        if self.datatype is not None:
            return self.datatype
        if self.default is None:
            return None
        return type(self.default)

    def parse(self, value: Any) -> Any:
        """Convert *value* to the parameter's type and check the constraint."""
        value = self._convert(value)
        self._check(value)
        return value

    def _convert(self, value: Any) -> Any:
        kind = self.type
        # bool is an int subclass; keep it from passing as a number
        if kind in (int, float) and isinstance(value, bool):
            raise ConfigurationError(f"Parameter '{self.name}' expects a number, got {value!r}")
        if value is None or kind is None or isinstance(value, kind):
            return value
        try:
            if kind is bool:
                text = str(value).strip().lower()
                if text in _TRUE:
                    return True
                if text in _FALSE:
                    return False
                raise ValueError(value)
            if kind is float and isinstance(value, (int, str)):
                return float(value)
            if kind is int and isinstance(value, str):
                return int(value.strip())
            if kind is int and isinstance(value, float) and value.is_integer():
                return int(value)
            if kind is str and isinstance(value, (int, float)):
                return str(value)
            if kind is list and isinstance(value, (tuple, set)):
                return list(value)
            if kind is list and isinstance(value, str):
                return [v.strip() for v in value.split(",") if v.strip()]
        except ValueError:
            pass
        raise ConfigurationError(
            f"Parameter '{self.name}' expects {kind.__name__}, got {value!r}"
        )

    def _check(self, value: Any) -> None:
        constraint = self.constraint
        if constraint is None or value is None:
            return
        if isinstance(constraint, (str, re.Pattern)):
            if not re.fullmatch(constraint, str(value)):
                raise ConfigurationError(
                    f"Parameter '{self.name}' value {value!r} does not match {_pattern(constraint)!r}"
                )
            return
        if callable(constraint):
            if not constraint(value):
                raise ConfigurationError(f"Parameter '{self.name}' value {value!r} is not allowed")
            return
        allowed = list(constraint)
        if isinstance(value, str):
            folded = {str(a).lower() for a in allowed}
            if value.lower() in folded:
                return
        elif value in allowed:
            return
        raise ConfigurationError(
            f"Parameter '{self.name}' value {value!r} not in {', '.join(map(str, allowed))}"
        )


def _pattern(constraint: str | re.Pattern) -> str:
    return constraint.pattern if isinstance(constraint, re.Pattern) else constraint


class ParameterContainer:
    """Mixin collecting ``parameters`` declarations along the class hierarchy.

    Subclasses declare::

        class ChecksumTester(Task):
            parameters = (
                Parameter("checksum_type", "MD5", constraint=("MD5", "SHA1")),
            )

    and the merged declarations are available as ``cls.parameter_defs``.
    A redeclared name overrides the inherited declaration.
    """

    parameters: ClassVar[tuple[Parameter, ...]] = ()
    parameter_defs: ClassVar[dict[str, Parameter]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        merged: dict[str, Parameter] = {}
        for base in reversed(cls.__mro__[1:]):
            merged.update(getattr(base, "parameter_defs", {}) or {})
        for param in cls.__dict__.get("parameters", ()):
            merged[param.name] = param
        cls.parameter_defs = merged

    @classmethod
    def default_options(cls) -> dict[str, Any]:
        return {name: _copy_default(p.default) for name, p in cls.parameter_defs.items()}

    @classmethod
    def resolve_parameters(cls, config: Mapping[str, Any]) -> dict[str, Any]:
        """Layer declared defaults < ``options``/``parameters`` block < sibling keys.

        Declared parameters are parsed; undeclared keys are passed through.
        """
        values = cls.default_options()
        for block in ("options", "parameters"):
            nested = config.get(block) or {}
            if not isinstance(nested, Mapping):
                raise ConfigurationError(f"'{block}' must be a mapping, got {type(nested).__name__}")
            values.update(nested)
        values.update({k: v for k, v in config.items() if k not in RESERVED_KEYS})

        for key, value in values.items():
            param = cls.parameter_defs.get(key)
            if param is not None:
                values[key] = param.parse(value)
        return values

    def parameter(self, name: str, default: Any = None) -> Any:
        """Return the resolved value of option *name*."""
        options: dict[str, Any] = getattr(self, "options")
        return options.get(name, default)

    def set_parameter(self, name: str, value: Any) -> Any:
        """Parse *value* through the declaration of *name* and store it as an option."""
        param = self.parameter_defs.get(name)
        if param is None:
            raise ConfigurationError(f"Unknown parameter '{name}' for {type(self).__name__}")
        options: dict[str, Any] = getattr(self, "options")
        options[name] = param.parse(value)
        return options[name]


def _copy_default(value: Any) -> Any:
    if isinstance(value, (list, dict, set)):
        return type(value)(value)
    return value
