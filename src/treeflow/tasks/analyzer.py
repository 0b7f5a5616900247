"""Closing task that summarizes what happened during a run."""

from __future__ import annotations

from treeflow.history import Severity
from treeflow.items import WorkItem
from treeflow.parameters import Parameter
from treeflow.tasks.base import Task
from treeflow.tasks.registry import register_task


@register_task
class Analyzer(Task):
    """Log message counts per severity and the failed items of the run.

    Runs even when the root item already failed.
    """

    parameters = (
        Parameter("run_always", True, "run even when the item already failed"),
        Parameter("list_failed", True, "log every failed item"),
    )

    def process(self, item: WorkItem) -> None:
        engine = self._bound_engine()
        summary = engine.messages.summary()
        if summary:
            counts = ", ".join(f"{name}: {count}" for name, count in summary.items())
            self.info("Messages - %s", counts, item=item)
        else:
            self.info("No messages recorded", item=item)

        status_log = engine.status_log
        failed = [(i, status_log.failed_scopes(i)) for i in item.walk() if status_log.failed_scopes(i)]
        if not failed:
            self.info("No failed items", item=item)
            return
        self.warn("%d failed item(s)", len(failed), item=item)
        if self.parameter("list_failed"):
            for failed_item, scopes in failed:
                scope = ", ".join(e.task_path for e in scopes)
                self.message(Severity.WARNING, "Failed: %s in %s", failed_item.namepath, scope, item=item)
