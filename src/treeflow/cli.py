"""treeflow CLI: run and inspect workflow files.

Installed as ``treeflow`` console_script.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import click
from rich.table import Table
from rich.tree import Tree

from treeflow import __version__
from treeflow.config import LOG_LEVELS, Config
from treeflow.errors import ConfigurationError

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _parse_assignments(values: tuple[str, ...], option: str) -> dict[str, str]:
    """``("a=1", "b=2")`` -> ``{"a": "1", "b": "2"}``."""
    parsed: dict[str, str] = {}
    for raw in values:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected NAME=VALUE, got '{raw}'.", param_hint=option)
        parsed[key.strip()] = value
    return parsed


def _make_config(ctx: click.Context, log_level: str = "", work_dir: str = "") -> Config:
    verbose = bool((ctx.obj or {}).get("verbose"))
    try:
        return Config(verbose=verbose, console_level=log_level, work_dir=work_dir)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="treeflow")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """treeflow: apply a tree of tasks to a tree of work items.

    \b
    EXAMPLES:
      treeflow check workflow.yaml
      treeflow run workflow.yaml --input dirname=./data
      treeflow run workflow.yaml --set ChecksumTester#checksum_type=SHA256
      treeflow tasks
    """
    from treeflow import log as tlog

    tlog.set_verbose(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


# ── Subcommand: run ──────────────────────────────────────────────


@main.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--input", "-i", "inputs", multiple=True, metavar="NAME=VALUE", help="Run input value")
@click.option("--set", "-s", "overrides", multiple=True, metavar="TASK#PARAM=VALUE", help="Override a task option")
@click.option("--root", "root_dir", default="", help="Use this directory as the root work item")
@click.option("--report", "report_file", default="", help="Write the JSON run report to this file")
@click.option("--work-dir", default="", help="Directory for per-run reports (or TREEFLOW_WORK_DIR)")
@click.option("--log-level", default=None, type=click.Choice(LOG_LEVELS, case_sensitive=False),
              help="Lowest message severity echoed to the console")
@click.pass_context
def run(
    ctx: click.Context,
    workflow: Path,
    inputs: tuple[str, ...],
    overrides: tuple[str, ...],
    root_dir: str,
    report_file: str,
    work_dir: str,
    log_level: str | None,
) -> None:
    """Run WORKFLOW (YAML or JSON) and print a summary.

    Exits with status 1 when the run failed.
    """
    from treeflow import log as tlog
    from treeflow.items import DirItem
    from treeflow.job import load_job
    from treeflow.reports import save_report, show_summary

    cfg = _make_config(ctx, log_level or "", work_dir)
    input_values = _parse_assignments(inputs, "--input")
    options: dict[str, Any] = dict(_parse_assignments(overrides, "--set"))

    root = None
    if root_dir:
        try:
            root = DirItem(root_dir)
        except NotADirectoryError as exc:
            raise click.BadParameter(str(exc), param_hint="--root") from exc

    try:
        job = load_job(workflow, config=cfg)
        wf_run = job.make_run(root, options=options, **input_values)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    tlog.info(f"Running workflow '{job.name}' ({wf_run.name})")
    wf_run.execute()
    show_summary(wf_run)

    if report_file:
        path = save_report(wf_run, report_file)
        tlog.info(f"Report: {path}")

    if wf_run.failed:
        tlog.error(f"Workflow '{job.name}' failed")
        sys.exit(1)
    tlog.success(f"Workflow '{job.name}' completed")


# ── Subcommand: check ────────────────────────────────────────────


def _task_tree(tasks: list, label: str) -> Tree:
    tree = Tree(f"[bold]{label}[/bold]")

    def add(node: Tree, task: Any) -> None:
        defaults = type(task).default_options()
        changed = {k: v for k, v in task.options.items() if defaults.get(k, object()) != v}
        extra = ", ".join(f"{k}={v!r}" for k, v in changed.items())
        text = f"{task.name} [dim]({type(task).__name__})[/dim]"
        if extra:
            text += f" {extra}"
        branch = node.add(text)
        for sub in task.subtasks:
            add(branch, sub)

    for top in tasks:
        add(tree, top)
    return tree


@main.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def check(ctx: click.Context, workflow: Path) -> None:
    """Validate WORKFLOW and show its task tree."""
    from treeflow import log as tlog
    from treeflow.job import load_job
    from treeflow.tasks.tree import build_tasks

    cfg = _make_config(ctx)
    try:
        job = load_job(workflow, config=cfg)
        tasks = build_tasks(job.tasks(), registry=job.registry)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    if not tasks:
        tlog.warn(f"Workflow '{job.name}' has no tasks")
    tlog.console.print(_task_tree(tasks, job.name))
    if job.inputs:
        table = Table(title="Input")
        table.add_column("Name", no_wrap=True)
        table.add_column("Default")
        table.add_column("Propagates to")
        table.add_column("Description")
        for slot in job.inputs.values():
            table.add_row(slot.name, repr(slot.default), ", ".join(slot.propagate_to), slot.description)
        tlog.console.print(table)
    tlog.success(f"Workflow '{job.name}' is valid")


# ── Subcommand: tasks ────────────────────────────────────────────


@main.command("tasks")
def list_tasks() -> None:
    """List the registered task kinds and their parameters."""
    from treeflow import log as tlog
    from treeflow.tasks import default_registry

    table = Table(title="Task kinds")
    table.add_column("Kind", no_wrap=True)
    table.add_column("Parameter", no_wrap=True)
    table.add_column("Default")
    table.add_column("Description")
    for name, cls in default_registry:
        first = True
        for param in cls.parameter_defs.values():
            table.add_row(name if first else "", param.name, repr(param.default), param.description)
            first = False
    tlog.console.print(table)


if __name__ == "__main__":
    main()
