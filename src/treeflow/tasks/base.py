"""Task tree nodes: configuration, processing hooks and run-time helpers."""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any, ClassVar, Iterator, Mapping

from treeflow.errors import ConfigurationError
from treeflow.history import Severity
from treeflow.items import NAME_SEPARATOR, WorkItem
from treeflow.parameters import Parameter, ParameterContainer
from treeflow.status import Status, StatusEntry

if TYPE_CHECKING:
    from treeflow.engine import Engine


class Task(ParameterContainer):
    """A node of the static processing tree.

    Leaf tasks override :meth:`process`; a task with subtasks and no
    ``process`` of its own is a pure group. Construction resolves the
    options; the tree structure is fixed afterwards. ``workitem`` and
    ``engine`` are the only fields that change during a run.
    """

    parameters = (
        Parameter("abort_on_error", False, "stop running sibling subtasks on an item this task failed"),
        Parameter("run_always", False, "run even when the item already failed"),
        Parameter("subitems", False, "process the children of the item instead of the item itself"),
        Parameter("recursive", False, "re-apply the task depth-first to all child items"),
        Parameter("abort_recursion", False, "stop visiting child items after the first failed one"),
        Parameter("retry_count", 0, "attempts to repeat when the item is locked by another process",
                  constraint=lambda v: v >= 0),
        Parameter("retry_interval", 10.0, "seconds to wait between retries",
                  constraint=lambda v: v >= 0),
    )

    # Item kinds the task accepts; anything else is an ItemTypeError.
    item_types: ClassVar[tuple[type, ...]] = (WorkItem,)

    def __init__(self, config: Mapping[str, Any] | None = None, parent: Task | None = None) -> None:
        config = dict(config or {})
        self.name: str = str(config.get("name") or config.get("class") or type(self).__name__)
        self._parent: weakref.ref[Task] | None = None
        self.parent = parent
        self.subtasks: list[Task] = []
        self.options: dict[str, Any] = self.resolve_parameters(config)
        self.config = config
        self.workitem: WorkItem | None = None
        self.engine: Engine | None = None

    # ── tree ─────────────────────────────────────────────────────

    @property
    def parent(self) -> Task | None:
        return self._parent() if self._parent is not None else None

    @parent.setter
    def parent(self, value: Task | None) -> None:
        self._parent = weakref.ref(value) if value is not None else None

    def add_subtask(self, task: Task) -> Task:
        task.parent = self
        self.subtasks.append(task)
        return task

    def __lshift__(self, task: Task) -> Task:
        self.add_subtask(task)
        return self

    @property
    def names(self) -> list[str]:
        parent = self.parent
        return (parent.names if parent is not None else []) + [self.name]

    @property
    def namepath(self) -> str:
        return NAME_SEPARATOR.join(self.names)

    def walk(self) -> Iterator[Task]:
        yield self
        for sub in self.subtasks:
            yield from sub.walk()

    @classmethod
    def implements_process(cls) -> bool:
        return cls.process is not Task.process

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for a task with neither subtasks nor processing logic."""
        if not self.subtasks and not self.implements_process():
            raise ConfigurationError(
                f"Task '{self.namepath}' has no subtasks and does not implement process()"
            )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.namepath!r}>"

    # ── options ──────────────────────────────────────────────────

    @property
    def abort_on_error(self) -> bool:
        return bool(self.options.get("abort_on_error"))

    @property
    def run_always(self) -> bool:
        return bool(self.options.get("run_always"))

    @property
    def subitems(self) -> bool:
        return bool(self.options.get("subitems"))

    @property
    def recursive(self) -> bool:
        return bool(self.options.get("recursive"))

    @property
    def abort_recursion(self) -> bool:
        return bool(self.options.get("abort_recursion"))

    @property
    def retry_count(self) -> int:
        return int(self.options.get("retry_count") or 0)

    @property
    def retry_interval(self) -> float:
        return float(self.options.get("retry_interval") or 0)

    def accepts(self, item: WorkItem) -> bool:
        return isinstance(item, self.item_types)

    # ── hooks ────────────────────────────────────────────────────

    def pre_process(self, item: WorkItem) -> None:
        """Called before :meth:`process`."""

    def process(self, item: WorkItem) -> None:
        """Leaf processing logic. Groups leave this alone."""

    def post_process(self, item: WorkItem) -> None:
        """Called after the subtasks ran on the item."""

    # ── run-time helpers (available while bound to an engine) ───

    def _bound_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError(f"Task '{self.namepath}' is not bound to a run")
        return self.engine

    def message(self, severity: Severity | str, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self._bound_engine().log(severity, self, item or self.workitem, msg, *args)

    def debug(self, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self.message(Severity.DEBUG, msg, *args, item=item)

    def info(self, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self.message(Severity.INFO, msg, *args, item=item)

    def warn(self, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self.message(Severity.WARNING, msg, *args, item=item)

    def error(self, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self.message(Severity.ERROR, msg, *args, item=item)

    def fatal(self, msg: str, *args: Any, item: WorkItem | None = None) -> None:
        self.message(Severity.FATAL, msg, *args, item=item)

    def set_item_status(
        self,
        status: Status | str,
        item: WorkItem | None = None,
        progress: int | None = None,
        max: int | None = None,
    ) -> StatusEntry:
        target = item or self.workitem
        if target is None:
            raise RuntimeError(f"Task '{self.namepath}' has no current work item")
        return self._bound_engine().status_log.set_status(self, target, status, progress=progress, max=max)

    def status_progress(
        self,
        progress: int | None = None,
        max: int | None = None,
        item: WorkItem | None = None,
    ) -> StatusEntry:
        target = item or self.workitem
        if target is None:
            raise RuntimeError(f"Task '{self.namepath}' has no current work item")
        return self._bound_engine().status_log.status_progress(self, target, progress=progress, max=max)

    def item_status(self, item: WorkItem | None = None) -> Status:
        target = item or self.workitem
        if target is None:
            return Status.CREATED
        return self._bound_engine().status_log.status(self, target)


class TaskGroup(Task):
    """A task that only runs its subtasks."""
