"""Run reports: JSON file in the work directory and the console summary."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from rich.table import Table

from treeflow import log
from treeflow.io_utils import write_json
from treeflow.status import Status

if TYPE_CHECKING:
    from treeflow.job import Run

_STATUS_STYLES = {
    Status.CREATED: "dim",
    Status.STARTED: "yellow",
    Status.DONE: "green",
    Status.ASYNC_HALT: "magenta",
    Status.FAILED: "red",
}


def build_report(run: Run) -> dict:
    report = run.to_dict()
    report["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    report["messages"] = [e.to_dict() for e in run.messages.entries]
    return report


def save_report(run: Run, path: str | Path | None = None) -> Path | None:
    """Write the JSON report of *run*.

    Without an explicit *path* the report goes to ``<work_dir>/<run>/<report_name>``;
    nothing is written when no work directory is configured.
    """
    target = Path(path) if path is not None else run.config.report_path(run.name)
    if target is None:
        return None
    write_json(target, build_report(run))
    log.debug(f"Report written to {target}")
    return target


# ── Summary ──────────────────────────────────────────────────────────

def status_table(run: Run) -> Table:
    """Leaf items of the run with their current status and last task scope."""
    table = Table(title=f"{run.name} items", show_lines=False)
    table.add_column("Item")
    table.add_column("Task")
    table.add_column("Status")
    for item in run.root_item.leaves():
        entry = run.status_log.find_last(None, item)
        status = entry.status if entry else Status.CREATED
        style = _STATUS_STYLES[status]
        table.add_row(
            item.namepath,
            entry.task_path if entry else "",
            f"[{style}]{status.value}[/{style}]",
        )
    return table


def show_summary(run: Run) -> None:
    """Print the final run summary."""
    status = run.status
    style = _STATUS_STYLES[status]

    log.console.print("")
    log.console.print("[bold]============================================[/bold]")
    log.console.print(f"Run [bold]{run.name}[/bold] finished: [{style}]{status.value}[/{style}]"
                      + (" (aborted)" if run.aborted else ""))
    log.console.print("[bold]============================================[/bold]")
    log.console.print(status_table(run))

    counts = run.status_counts()
    if counts:
        log.console.print("[bold]>>> Items[/bold]")
        for name, count in sorted(counts.items()):
            log.console.print(f"  {name}: {count}")

    summary = run.summary
    if summary:
        log.console.print("[bold]>>> Messages[/bold]")
        for severity, count in summary.items():
            log.console.print(f"  {severity}: {count}")
    log.console.print("[bold]============================================[/bold]")
