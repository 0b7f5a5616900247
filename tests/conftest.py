"""Shared fixtures for treeflow tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use treeflow.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from treeflow.config import Config
from treeflow.engine import Engine
from treeflow.io_utils import write_text
from treeflow.items import WorkItem
from treeflow.tasks.registry import default_registry


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of Config defaults."""
    monkeypatch.delenv("TREEFLOW_LOG_LEVEL", raising=False)
    monkeypatch.delenv("TREEFLOW_WORK_DIR", raising=False)


@pytest.fixture
def quiet_config() -> Config:
    """Config that keeps engine messages off the console."""
    return Config(echo_messages=False)


@pytest.fixture
def engine(quiet_config: Config) -> Engine:
    return Engine(config=quiet_config)


@pytest.fixture
def registry():
    """A child of the default registry, so test task kinds do not leak."""
    return default_registry.child()


def _make_items(name: str, children: list[Any] | None = None) -> WorkItem:
    """Build an in-memory item tree.

    ``children`` holds names or ``(name, [children...])`` tuples.
    """
    root = WorkItem(name)
    for child in children or []:
        if isinstance(child, tuple):
            root.add_item(_make_items(*child))
        else:
            root.add_item(WorkItem(child))
    return root


@pytest.fixture
def make_items():
    """Factory fixture that creates WorkItem trees."""
    return _make_items


@pytest.fixture
def item_dir(tmp_path: Path) -> Path:
    """A directory with one (empty) sub-directory and two files.

    Sorted order of the entries: ``a_file.txt``, ``b_file.txt``, ``sub_dir``.
    """
    root = tmp_path / "items"
    (root / "sub_dir").mkdir(parents=True)
    write_text(root / "a_file.txt", "alpha\n")
    write_text(root / "b_file.txt", "bravo\n")
    return root
