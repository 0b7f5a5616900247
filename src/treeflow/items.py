"""Work items: the dynamic data tree the tasks are applied to."""

from __future__ import annotations

import hashlib
import itertools
import re
import weakref
from pathlib import Path
from typing import Any, Callable, Iterator

from treeflow.history import LogEntry
from treeflow.status import StatusEntry

NAME_SEPARATOR = "/"

_counter = itertools.count(1)


class WorkItem:
    """In-memory work item.

    A storage backend subclasses this and overrides :meth:`save`; everything
    else (paths, labels, iteration) works on top of ``parent``, ``items``,
    ``properties`` and ``name``.
    """

    def __init__(
        self,
        name: str = "",
        *,
        label: str = "",
        properties: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self._name = name
        self._label = label
        self._debug_name = f"{type(self).__name__}-{next(_counter)}"
        self._parent: weakref.ref[WorkItem] | None = None
        self.items: list[WorkItem] = []
        self.properties: dict[str, Any] = dict(properties or {})
        self.options: dict[str, Any] = dict(options or {})
        self.status_log: list[StatusEntry] = []
        self.log_history: list[LogEntry] = []
        self.save_hooks: list[Callable[[WorkItem], None]] = []

    # ── identity ─────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.properties.get("name") or self._name or self._debug_name

    @name.setter
    def name(self, value: str) -> None:
        self._name = value
        self.properties.pop("name", None)

    @property
    def label(self) -> str:
        return self._label or self.name

    @label.setter
    def label(self, value: str) -> None:
        self._label = value

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.namepath!r}>"

    # ── hierarchy ────────────────────────────────────────────────

    @property
    def parent(self) -> WorkItem | None:
        return self._parent() if self._parent is not None else None

    @parent.setter
    def parent(self, value: WorkItem | None) -> None:
        self._parent = weakref.ref(value) if value is not None else None

    def add_item(self, item: WorkItem) -> WorkItem:
        """Append *item* as the last child and return it."""
        item.parent = self
        self.items.append(item)
        return item

    def __lshift__(self, item: WorkItem) -> WorkItem:
        self.add_item(item)
        return self

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return True

    @property
    def size(self) -> int:
        return len(self.items)

    @property
    def root_item(self) -> WorkItem:
        parent = self.parent
        return parent.root_item if parent is not None else self

    def walk(self) -> Iterator[WorkItem]:
        """Yield this item and its descendants, depth-first pre-order."""
        yield self
        for child in self.items:
            yield from child.walk()

    def leaves(self) -> list[WorkItem]:
        return [i for i in self.walk() if not i.items]

    # ── paths ────────────────────────────────────────────────────

    @property
    def names(self) -> list[str]:
        parent = self.parent
        return (parent.names if parent is not None else []) + [self.name]

    @property
    def namepath(self) -> str:
        return NAME_SEPARATOR.join(self.names)

    @property
    def labels(self) -> list[str]:
        parent = self.parent
        return (parent.labels if parent is not None else []) + [self.label]

    @property
    def labelpath(self) -> str:
        return NAME_SEPARATOR.join(self.labels)

    @property
    def safe_name(self) -> str:
        """File-name safe version of the name (``%xx`` escapes)."""
        return re.sub(r"[^\w.-]", lambda m: f"%{ord(m.group()):02x}", self.name)

    # ── storage ──────────────────────────────────────────────────

    def save(self) -> None:
        """Persist the item; called after every status change."""
        for hook in self.save_hooks:
            hook(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "type": type(self).__name__,
            "properties": {k: v for k, v in self.properties.items() if _is_plain(v)},
            "items": [child.to_dict() for child in self.items],
        }


def _is_plain(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool, type(None), list, dict))


class FileItem(WorkItem):
    """Work item backed by a file; the name is the file's base name."""

    def __init__(self, path: str | Path = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if path:
            self.filename = path

    @property
    def filename(self) -> str:
        return self.properties.get("filename", "")

    @filename.setter
    def filename(self, value: str | Path) -> None:
        path = Path(value).resolve()
        self.properties["filename"] = str(path)
        self._name = path.name

    @property
    def long_name(self) -> str:
        return self.filename

    @property
    def path(self) -> Path:
        return Path(self.filename)

    def checksum(self, algorithm: str = "md5") -> str:
        digest = hashlib.new(algorithm.lower().replace("-", ""))
        with self.path.open("rb") as f:
            for chunk in iter(lambda: f.read(1 << 16), b""):
                digest.update(chunk)
        return digest.hexdigest()


class DirItem(FileItem):
    """Work item backed by a directory."""

    @FileItem.filename.setter
    def filename(self, value: str | Path) -> None:
        path = Path(value).resolve()
        if not path.is_dir():
            raise NotADirectoryError(f"'{value}' is not a directory")
        self.properties["filename"] = str(path)
        self._name = path.name

    def collect(
        self,
        *,
        recursive: bool = False,
        selection: str = "",
        file_class: type[FileItem] = FileItem,
        dir_class: type[DirItem] | None = None,
    ) -> list[FileItem]:
        """Add the directory entries as children in sorted file-system order.

        Sub-directories become :class:`DirItem` children and are collected
        themselves when *recursive*. *selection* is a regular expression
        files must match (searched in the base name).
        """
        dir_class = dir_class or type(self)
        added: list[FileItem] = []
        for entry in sorted(self.path.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                child: FileItem = dir_class(entry)
                self.add_item(child)
                if recursive:
                    child.collect(
                        recursive=True,
                        selection=selection,
                        file_class=file_class,
                        dir_class=dir_class,
                    )
            elif entry.is_file():
                if selection and not re.search(selection, entry.name):
                    continue
                child = file_class(entry)
                self.add_item(child)
            else:
                continue
            added.append(child)
        return added
