"""UTF-8 text I/O and loading of YAML/JSON workflow files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from treeflow.errors import ConfigurationError

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict", **kwargs: Any) -> str:
    """Read path as text with UTF-8 encoding."""
    p = path if isinstance(path, Path) else Path(path)
    return p.read_text(encoding="utf-8", errors=errors, **kwargs)


def write_text(path: PathLike, text: str, **kwargs: Any) -> None:
    """Write text to path with UTF-8 encoding, creating parent directories."""
    p = path if isinstance(path, Path) else Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8", **kwargs)


def write_json(path: PathLike, data: Any) -> None:
    write_text(path, json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n")


def load_structured(path: PathLike) -> dict[str, Any]:
    """Load a mapping from a ``.json``, ``.yaml`` or ``.yml`` file.

    Raises :class:`ConfigurationError` when the file cannot be parsed or does
    not hold a mapping at its top level.
    """
    p = path if isinstance(path, Path) else Path(path)
    text = read_text(p)
    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not parse {p}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{p} must contain a mapping at the top level")
    return data
