"""Status log: per (task, item) status history with a fixed total order."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from treeflow import log

if TYPE_CHECKING:
    from treeflow.items import WorkItem
    from treeflow.tasks.base import Task


class Status(str, Enum):
    """Status of an item in a task scope.

    Members are declared in rank order; :attr:`rank` is the position, so
    ``created < started < done < async_halt < failed``.
    """

    CREATED = "created"
    STARTED = "started"
    DONE = "done"
    ASYNC_HALT = "async_halt"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def text(self) -> str:
        return self.value.replace("_", " ")

    @property
    def is_failure(self) -> bool:
        """``True`` for states that stop the traversal of an item (failed, async_halt)."""
        return self in (Status.FAILED, Status.ASYNC_HALT)

    @classmethod
    def coerce(cls, value: Status | str) -> Status:
        if isinstance(value, Status):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown status: {value}") from None


_RANKS: dict[Status, int] = {s: i for i, s in enumerate(Status)}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StatusEntry:
    task_path: str
    item_path: str
    status: Status
    progress: int | None = None
    max: int | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    item: WorkItem | None = field(default=None, repr=False, compare=False)

    def update(self, progress: int | None = None, max: int | None = None) -> StatusEntry:
        """Change progress/max in place; arguments left at ``None`` are kept."""
        if progress is not None:
            self.progress = progress
        if max is not None:
            self.max = max
        self.updated_at = _now()
        return self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "task": self.task_path,
            "item": self.item_path,
            "status": self.status.value,
            "created": self.created_at.isoformat(timespec="milliseconds"),
            "updated": self.updated_at.isoformat(timespec="milliseconds"),
        }
        if self.progress is not None:
            data["progress"] = self.progress
        if self.max is not None:
            data["max"] = self.max
        return data

    def __str__(self) -> str:
        text = f"{self.task_path} - {self.item_path} : {self.status.value}"
        if self.progress is not None:
            text += f" ({self.progress}/{self.max if self.max is not None else '?'})"
        return text


def task_path_of(task: Task | str | None) -> str | None:
    if task is None or isinstance(task, str):
        return task
    return task.namepath


def item_path_of(item: WorkItem | str) -> str:
    if isinstance(item, str):
        return item
    return item.namepath


class StatusLog:
    """Append-only status history of one run.

    History belongs to the item object, so renaming an item (or one of its
    ancestors) keeps its earlier entries. Plain name-path strings are
    accepted too: they resolve to the tracked item currently at that path,
    or else address entries recorded under that string. Every entry is also
    appended to the item's own ``status_log`` and the item is saved after
    each change.

    Usage::

        log = StatusLog()
        log.set_status(task, item, Status.STARTED)
        log.status(task, item)                 # Status.STARTED
        log.set_status(task, item, Status.STARTED, progress=3, max=10)  # updated in place
        log.check_status(Status.DONE, task, item)  # False
    """

    def __init__(self) -> None:
        self.entries: list[StatusEntry] = []
        self._seq = 0
        # values are (sequence, entry); keys hold the WorkItem itself or a path string
        self._last_by_scope: dict[tuple[str, Any], tuple[int, StatusEntry]] = {}
        self._last_by_item: dict[Any, tuple[int, StatusEntry]] = {}

    def __len__(self) -> int:
        return len(self.entries)

    # ── keys ─────────────────────────────────────────────────────

    def _key(self, item: WorkItem | str) -> Any:
        if not isinstance(item, str):
            return item
        for known in self._last_by_item:
            if not isinstance(known, str) and known.namepath == item:
                return known
        return item

    @staticmethod
    def _aliases(key: Any) -> list[Any]:
        """Keys under which entries of *key* may be stored, most specific first."""
        if isinstance(key, str):
            return [key]
        return [key, key.namepath]

    @staticmethod
    def _latest(found: list[tuple[int, StatusEntry] | None]) -> StatusEntry | None:
        present = [f for f in found if f is not None]
        return max(present, key=lambda f: f[0])[1] if present else None

    def _owns(self, entry: StatusEntry, key: Any) -> bool:
        if entry.item is not None:
            return entry.item is key
        return entry.item_path == (key if isinstance(key, str) else key.namepath)

    # ── queries ──────────────────────────────────────────────────

    def find_last(self, task: Task | str | None, item: WorkItem | str) -> StatusEntry | None:
        """Return the most recent entry for (task, item), or ``None`` if there is none.

        With ``task=None`` the most recent entry of the item in any task scope
        is returned.
        """
        aliases = self._aliases(self._key(item))
        task_path = task_path_of(task)
        if task_path is None:
            return self._latest([self._last_by_item.get(k) for k in aliases])
        return self._latest([self._last_by_scope.get((task_path, k)) for k in aliases])

    def entries_for(self, item: WorkItem | str, task: Task | str | None = None) -> list[StatusEntry]:
        key = self._key(item)
        task_path = task_path_of(task)
        return [
            e for e in self.entries
            if self._owns(e, key) and (task_path is None or e.task_path == task_path)
        ]

    def failed_scopes(self, item: WorkItem | str) -> list[StatusEntry]:
        """Latest entry of every task scope on *item* that ended failure-like.

        Unlike :meth:`is_failed` this does not care about what happened on the
        item afterwards in other scopes.
        """
        key = self._key(item)
        path = item_path_of(key)
        latest: dict[str, tuple[int, StatusEntry]] = {}
        for (task_path, k), found in self._last_by_scope.items():
            if k is key or (isinstance(k, str) and k == path):
                if task_path not in latest or found[0] > latest[task_path][0]:
                    latest[task_path] = found
        ordered = sorted(latest.values(), key=lambda f: f[0])
        return [e for _, e in ordered if e.status.is_failure]

    def status(self, task: Task | str | None, item: WorkItem | str) -> Status:
        """Last known status for (task, item); :attr:`Status.CREATED` when nothing was recorded."""
        entry = self.find_last(task, item)
        return entry.status if entry else Status.CREATED

    def status_txt(self, task: Task | str | None, item: WorkItem | str) -> str:
        return self.status(task, item).text

    def status_label(self, task: Task | str | None, item: WorkItem | str) -> str:
        """``<task path><Status>``, e.g. ``CollectFilesDone``."""
        status = self.status(task, item)
        camel = "".join(part.capitalize() for part in status.value.split("_"))
        return f"{task_path_of(task) or ''}{camel}"

    def compare_status(self, state: Status | str, task: Task | str | None, item: WorkItem | str) -> int:
        """Return 1, 0 or -1 as the current status ranks above, equal to or below *state*."""
        current = self.status(task, item).rank
        other = Status.coerce(state).rank
        return (current > other) - (current < other)

    def check_status(self, state: Status | str, task: Task | str | None, item: WorkItem | str) -> bool:
        return self.compare_status(state, task, item) == 0

    def is_failed(self, item: WorkItem | str, task: Task | str | None = None) -> bool:
        entry = self.find_last(task, item)
        return entry is not None and entry.status.is_failure

    # ── transitions ──────────────────────────────────────────────

    def set_status(
        self,
        task: Task | str,
        item: WorkItem | str,
        status: Status | str,
        progress: int | None = None,
        max: int | None = None,
    ) -> StatusEntry:
        """Record *status* for (task, item).

        A new entry is appended when the status differs from the latest entry
        of the scope; otherwise the latest entry's progress/max are updated in
        place.
        """
        status = Status.coerce(status)
        task_path = task_path_of(task) or ""
        key = self._key(item)
        last = self.find_last(task_path, key)
        self._seq += 1

        if last is not None and last.status == status:
            last.update(progress=progress, max=max)
            self._last_by_scope[(task_path, key)] = (self._seq, last)
            self._last_by_item[key] = (self._seq, last)
            _save(key)
            return last

        entry = StatusEntry(
            task_path=task_path,
            item_path=item_path_of(key),
            status=status,
            progress=progress,
            max=max,
            item=None if isinstance(key, str) else key,
        )
        self.entries.append(entry)
        self._last_by_scope[(task_path, key)] = (self._seq, entry)
        self._last_by_item[key] = (self._seq, entry)
        if not isinstance(key, str):
            key.status_log.append(entry)
        _save(key)
        log.debug(f"Status {task_path} - {entry.item_path}: {status.value}")
        return entry

    def status_progress(
        self,
        task: Task | str,
        item: WorkItem | str,
        progress: int | None = None,
        max: int | None = None,
    ) -> StatusEntry:
        """Update progress on the latest entry, or start the scope when it has none."""
        entry = self.find_last(task, item)
        if entry is not None:
            return entry.update(progress=progress, max=max)
        return self.set_status(task, item, Status.STARTED, progress=progress, max=max)


def _save(item: WorkItem | str) -> None:
    if not isinstance(item, str):
        item.save()
