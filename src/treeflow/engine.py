"""Execution engine: walks a task tree over a work-item tree.

The traversal is a plain recursive call chain. Every level returns an
:class:`Outcome`; exceptions raised by task hooks are turned into outcomes at
the single-item boundary (:meth:`Engine.run_item`). The item-type guard
raises :class:`ItemTypeError` before anything is recorded, so the failure
lands on the caller's item.
"""

from __future__ import annotations

import time
import traceback
from enum import Enum
from typing import Any, Sequence

from treeflow import log
from treeflow.config import Config
from treeflow.errors import ItemLockedError, ItemTypeError, WorkflowAbort, WorkflowError
from treeflow.history import MessageLog, Severity
from treeflow.items import WorkItem
from treeflow.status import Status, StatusLog
from treeflow.tasks.base import Task


class Outcome(str, Enum):
    CONTINUE = "continue"
    ITEM_FAILED = "item_failed"
    ABORT_RUN = "abort_run"


class Engine:
    """Runs tasks against items, recording statuses and messages of one run.

    Usage::

        engine = Engine(StatusLog(), MessageLog())
        engine.bind(tasks)
        outcome = engine.run_tasks(tasks, root_item)
    """

    def __init__(
        self,
        status_log: StatusLog | None = None,
        messages: MessageLog | None = None,
        config: Config | None = None,
    ) -> None:
        self.status_log = status_log if status_log is not None else StatusLog()
        self.messages = messages if messages is not None else MessageLog()
        self.config = config or Config()
        self._echo_level = Severity.coerce(self.config.console_level)

    def bind(self, tasks: Sequence[Task]) -> None:
        """Attach every task of the trees to this engine."""
        for top in tasks:
            for task in top.walk():
                task.engine = self

    # ── messages ─────────────────────────────────────────────────

    def log(
        self,
        severity: Severity | str,
        task: Task | str,
        item: WorkItem | None,
        msg: str,
        *args: Any,
    ) -> None:
        """Record a message tagged with the task path and item path."""
        if args:
            msg = msg % args
        task_path = task if isinstance(task, str) else task.namepath
        item_path = item.namepath if item is not None else ""
        entry = self.messages.add(severity, task_path, item_path, msg)
        if item is not None:
            item.log_history.append(entry)
        if self.config.echo_messages and entry.severity >= self._echo_level:
            log.message(entry.severity.name, entry.format())

    def debug(self, task: Task, item: WorkItem | None, msg: str, *args: Any) -> None:
        self.log(Severity.DEBUG, task, item, msg, *args)

    def warn(self, task: Task, item: WorkItem | None, msg: str, *args: Any) -> None:
        self.log(Severity.WARNING, task, item, msg, *args)

    def error(self, task: Task, item: WorkItem | None, msg: str, *args: Any) -> None:
        self.log(Severity.ERROR, task, item, msg, *args)

    # ── status ───────────────────────────────────────────────────

    def is_failed(self, item: WorkItem) -> bool:
        """Whether the most recent status of *item*, in any task scope, is a failure."""
        return self.status_log.is_failed(item)

    def set_status(self, task: Task, item: WorkItem, status: Status) -> None:
        self.status_log.set_status(task, item, status)

    # ── traversal ────────────────────────────────────────────────

    def run(self, task: Task, item: WorkItem) -> Outcome:
        """Run *task* on *item*, or on its children when the task is in subitems mode."""
        if task.subitems:
            return self.run_subitems(task, item)
        return self.run_single(task, item)

    def run_tasks(self, tasks: Sequence[Task], item: WorkItem) -> Outcome:
        """Run sibling *tasks* in order on *item*.

        A task is skipped when the item already failed and the task is not
        ``run_always``; iteration stops after a task with ``abort_on_error``
        left the item failed.
        """
        count = len(tasks)
        for i, task in enumerate(tasks, 1):
            if self.is_failed(item) and not task.run_always:
                continue
            if task.parent is not None:
                self.debug(task.parent, item, "Running subtask (%d/%d): %s", i, count, task.name)
            outcome = self.run(task, item)
            if outcome is Outcome.ABORT_RUN:
                return outcome
            if self.is_failed(item) and task.abort_on_error:
                self.error(task, item, "Aborting remaining tasks on %s", item.name)
                break
        return Outcome.ITEM_FAILED if self.is_failed(item) else Outcome.CONTINUE

    def run_subitems(self, task: Task, item: WorkItem) -> Outcome:
        """Apply the single-item path to each child of *item*.

        The item itself gets ``started``, and ``done`` only when no child
        ended failed; it is marked failed when every child failed.
        """
        task.workitem = item
        self.set_status(task, item, Status.STARTED)
        self.debug(task, item, "Started")

        children = self._eligible(task, item)
        count = len(children)
        failed = 0
        for i, child in enumerate(children, 1):
            self.debug(task, item, "Processing subitem (%d/%d): %s", i, count, child.name)
            try:
                outcome = self.run_single(task, child)
            except ItemTypeError:
                self.set_status(task, item, Status.FAILED)
                raise
            if outcome is Outcome.ABORT_RUN:
                self.set_status(task, item, Status.FAILED)
                return outcome
            if outcome is Outcome.ITEM_FAILED:
                failed += 1
        task.workitem = item

        if count:
            self.debug(task, item, "%d of %d subitems passed", count - failed, count)
        if failed:
            self.warn(task, item, "%d subitem(s) failed", failed)
            if failed == count:
                self.error(task, item, "All subitems have failed")
                self.set_status(task, item, Status.FAILED)
                return Outcome.ITEM_FAILED
            return Outcome.CONTINUE

        self.debug(task, item, "Completed")
        self.set_status(task, item, Status.DONE)
        return Outcome.CONTINUE

    def _eligible(self, task: Task, item: WorkItem) -> list[WorkItem]:
        """Children of *item* the task may run on; already failed ones are left out unless ``run_always``."""
        return [c for c in item.items if task.run_always or not self.is_failed(c)]

    def run_single(self, task: Task, item: WorkItem) -> Outcome:
        """Type guard, eligibility check, then :meth:`run_item` with retries."""
        if not task.accepts(item):
            expected = ", ".join(t.__name__ for t in task.item_types)
            raise ItemTypeError(
                f"Task '{task.namepath}' expects {expected}, got {type(item).__name__} '{item.namepath}'"
            )
        if self.is_failed(item) and not task.run_always:
            return Outcome.ITEM_FAILED

        attempt = 0
        while True:
            try:
                return self.run_item(task, item)
            except ItemLockedError as exc:
                if attempt >= task.retry_count:
                    if task.retry_count:
                        self.error(task, item, "Giving up after %d retries: %s", attempt, exc)
                    else:
                        self.error(task, item, "%s", exc)
                    self.set_status(task, item, Status.FAILED)
                    return Outcome.ITEM_FAILED
                attempt += 1
                self.warn(
                    task, item, "%s - retrying in %ss (attempt %d/%d)",
                    exc, task.retry_interval, attempt, task.retry_count,
                )
                time.sleep(task.retry_interval)

    def run_item(self, task: Task, item: WorkItem) -> Outcome:
        """Process one item: hooks, subtasks, recursion, completion.

        Order: ``started`` -> pre_process -> process -> subtasks ->
        post_process -> children (recursive mode) -> ``done`` unless the item
        failed. :class:`ItemLockedError` escapes to :meth:`run_single` for a
        retry; every other exception fails the item.
        """
        task.workitem = item
        self.set_status(task, item, Status.STARTED)
        self.debug(task, item, "Started")

        try:
            task.pre_process(item)
            task.process(item)

            outcome = self.run_tasks(task.subtasks, item)
            if outcome is Outcome.ABORT_RUN:
                self.set_status(task, item, Status.FAILED)
                return outcome

            task.workitem = item
            task.post_process(item)

            if task.recursive:
                outcome = self.run_children(task, item)
                task.workitem = item
                if outcome is Outcome.ABORT_RUN:
                    self.set_status(task, item, Status.FAILED)
                    return outcome

        except ItemLockedError:
            raise
        except WorkflowAbort as exc:
            self.error(task, item, "%s", exc)
            self.set_status(task, item, Status.FAILED)
            return Outcome.ABORT_RUN
        except WorkflowError as exc:
            self.error(task, item, "%s", exc)
            self.set_status(task, item, Status.FAILED)
            return Outcome.ITEM_FAILED
        except Exception as exc:
            self.log(Severity.FATAL, task, item, "Exception occurred: %s", exc)
            self.debug(task, item, "%s", traceback.format_exc().rstrip())
            self.set_status(task, item, Status.FAILED)
            return Outcome.ITEM_FAILED

        if self.is_failed(item):
            return Outcome.ITEM_FAILED
        self.debug(task, item, "Completed")
        self.set_status(task, item, Status.DONE)
        return Outcome.CONTINUE

    def run_children(self, task: Task, item: WorkItem) -> Outcome:
        """Recursive mode: run *task* on each child of *item*, depth-first."""
        children = self._eligible(task, item)
        count = len(children)
        failed = passed = 0
        for i, child in enumerate(children, 1):
            self.debug(task, item, "Processing subitem (%d/%d): %s", i, count, child.name)
            outcome = self.run_single(task, child)
            if outcome is Outcome.ABORT_RUN:
                return outcome
            if outcome is Outcome.ITEM_FAILED:
                failed += 1
                if task.abort_recursion:
                    self.error(task, item, "Stopping at failed subitem %s", child.name)
                    break
            else:
                passed += 1

        if count:
            self.debug(task, item, "%d of %d subitems passed", passed, count)
        if failed:
            self.warn(task, item, "%d subitem(s) failed", failed)
            if failed == count:
                self.error(task, item, "All subitems have failed")
                self.set_status(task, item, Status.FAILED)
                return Outcome.ITEM_FAILED
        return Outcome.CONTINUE
