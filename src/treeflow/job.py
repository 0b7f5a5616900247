"""Jobs bind a workflow configuration to input; runs execute one bound copy of it."""

from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from treeflow import log
from treeflow.config import Config
from treeflow.engine import Engine, Outcome
from treeflow.errors import ConfigurationError, WorkflowError
from treeflow.history import LogEntry, MessageLog, Severity
from treeflow.io_utils import load_structured
from treeflow.items import WorkItem
from treeflow.status import Status, StatusLog
from treeflow.tasks.base import Task
from treeflow.tasks.registry import TaskRegistry, default_registry
from treeflow.tasks.tree import TARGET_SEPARATOR, apply_options, build_tasks, split_target


@dataclass
class InputSlot:
    """A named run input with a default and the task parameters it feeds."""

    name: str
    default: Any = None
    propagate_to: list[str] = field(default_factory=list)
    description: str = ""

    @classmethod
    def from_config(cls, name: str, config: Any) -> InputSlot:
        if not isinstance(config, Mapping):
            return cls(name=name, default=config)
        targets = config.get("propagate_to") or []
        if isinstance(targets, str):
            targets = [targets]
        return cls(
            name=name,
            default=config.get("default"),
            propagate_to=[str(t) for t in targets],
            description=str(config.get("description") or ""),
        )

    def targets(self) -> list[tuple[str, str]]:
        """``(task name or path, parameter)`` pairs; the parameter defaults to the slot name."""
        pairs = []
        for target in self.propagate_to:
            task, param = split_target(target)
            pairs.append((task, param or self.name))
        return pairs


def _config_name(config: Mapping[str, Any]) -> str:
    return str(config.get("name") or config.get("class") or "TaskGroup")


def _bind_parameter(
    configs: list[dict[str, Any]],
    target: str,
    param: str,
    value: Any,
    prefix: str = "",
) -> int:
    """Set ``parameters[param]`` on every task config named or pathed *target*."""
    hits = 0
    for cfg in configs:
        name = _config_name(cfg)
        path = f"{prefix}/{name}" if prefix else name
        if target in (name, path):
            params = dict(cfg.get("parameters") or {})
            params[param] = value
            cfg["parameters"] = params
            # a sibling key would win over the parameters block
            cfg.pop(param, None)
            if isinstance(cfg.get("options"), Mapping):
                cfg["options"] = {k: v for k, v in cfg["options"].items() if k != param}
            hits += 1
        hits += _bind_parameter(cfg.get("tasks") or [], target, param, value, path)
    return hits


class Job:
    """A workflow definition: task configuration template plus input slots.

    Usage::

        job = Job.from_config(yaml_mapping)
        run = job.run(DirItem("/data"), dirname="/data")
        run.status   # Status.DONE
    """

    def __init__(
        self,
        name: str,
        tasks: Sequence[Mapping[str, Any]],
        *,
        description: str = "",
        input: Mapping[str, Any] | None = None,
        config: Config | None = None,
        registry: TaskRegistry | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.task_config: list[dict[str, Any]] = copy.deepcopy([dict(t) for t in tasks or []])
        self.inputs: dict[str, InputSlot] = {
            key: InputSlot.from_config(key, value) for key, value in (input or {}).items()
        }
        self.config = config or Config()
        self.registry = registry or default_registry
        self.runs: list[Run] = []
        self._input: dict[str, Any] = {}
        # Fail early on unknown task classes, bad defaults and dangling input targets.
        build_tasks(self.tasks(), registry=self.registry)

    @classmethod
    def from_config(
        cls,
        data: Mapping[str, Any],
        *,
        config: Config | None = None,
        registry: TaskRegistry | None = None,
    ) -> Job:
        tasks = data.get("tasks") or []
        if not isinstance(tasks, list):
            raise ConfigurationError("'tasks' must be a list")
        return cls(
            name=str(data.get("name") or "Workflow"),
            tasks=tasks,
            description=str(data.get("description") or ""),
            input=data.get("input") or {},
            config=config,
            registry=registry,
        )

    # ── input ────────────────────────────────────────────────────

    def input_values(self, input: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Slot defaults overlaid with the configured and the given input."""
        values = {name: slot.default for name, slot in self.inputs.items()}
        for source in (self._input, input or {}):
            for key, value in source.items():
                if key not in self.inputs:
                    raise ConfigurationError(f"Unknown input '{key}' for job {self.name}")
                values[key] = value
        return values

    def configure(self, input: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Store *input* and return the task configuration with the input bound in."""
        values = self.input_values(input)
        self._input = dict(input or {})
        return self.tasks(values)

    def tasks(self, values: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """A fresh copy of the task configuration with input values substituted."""
        values = self.input_values() if values is None else values
        bound = copy.deepcopy(self.task_config)
        for name, slot in self.inputs.items():
            for target, param in slot.targets():
                if _bind_parameter(bound, target, param, values.get(name)) == 0:
                    raise ConfigurationError(
                        f"Input '{name}' propagates to unknown task '{target}{TARGET_SEPARATOR}{param}'"
                    )
        return bound

    # ── runs ─────────────────────────────────────────────────────

    def run_name(self) -> str:
        return f"Run-{len(self.runs) + 1}"

    def make_run(
        self,
        root_item: WorkItem | None = None,
        *,
        options: Mapping[str, Any] | None = None,
        **input: Any,
    ) -> Run:
        """Build a run with its own task tree from the bound configuration.

        *options* are task option overrides applied after the input
        (``{"Task#param": value}`` or ``{"Task": {"param": value}}``).
        """
        values = self.input_values(input)
        configs = self.tasks(values)
        tasks = build_tasks(configs, registry=self.registry)
        if options:
            apply_options(tasks, options)
        name = self.run_name()
        run = Run(
            name=name,
            tasks=tasks,
            root_item=root_item if root_item is not None else WorkItem(self.name),
            options=values,
            config=self.config,
            job=self,
        )
        self.runs.append(run)
        return run

    def run(self, root_item: WorkItem | None = None, **input: Any) -> Run:
        run = self.make_run(root_item, **input)
        run.execute()
        return run

    @property
    def last_run(self) -> Run | None:
        return self.runs[-1] if self.runs else None


class Run:
    """One execution of a task tree over a root item.

    Owns its own status log, message history and engine; nothing is shared
    with other runs of the same job.
    """

    def __init__(
        self,
        name: str,
        tasks: list[Task],
        root_item: WorkItem,
        options: Mapping[str, Any] | None = None,
        config: Config | None = None,
        job: Job | None = None,
    ) -> None:
        self.name = name
        self.tasks = tasks
        self.root_item = root_item
        self.options: dict[str, Any] = dict(options or {})
        self.config = config or Config()
        self.job = job
        self.status_log = StatusLog()
        self.messages = MessageLog()
        self.engine = Engine(self.status_log, self.messages, self.config)
        self.engine.bind(tasks)
        self.aborted = False
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None

    @property
    def items(self) -> list[WorkItem]:
        return self.root_item.items

    def execute(self) -> Status:
        """Run the top-level tasks on the root item and return the run status."""
        root = self.root_item
        self.started_at = datetime.now(timezone.utc)
        self.status_log.set_status(self.name, root, Status.STARTED)
        self.engine.log(Severity.INFO, self.name, root, "Run started")

        try:
            outcome = self.engine.run_tasks(self.tasks, root)
        except WorkflowError as exc:
            self.engine.log(Severity.ERROR, self.name, root, "%s", exc)
            outcome = Outcome.ITEM_FAILED
            self.status_log.set_status(self.name, root, Status.FAILED)
        self.finished_at = datetime.now(timezone.utc)

        if outcome is Outcome.ABORT_RUN:
            self.aborted = True
            self.engine.log(Severity.ERROR, self.name, root, "Run aborted")
            self.status_log.set_status(self.name, root, Status.FAILED)
        elif self.status_log.failed_scopes(root):
            self.engine.log(Severity.ERROR, self.name, root, "Run failed")
            self.status_log.set_status(self.name, root, Status.FAILED)
        else:
            self.engine.log(Severity.INFO, self.name, root, "Run completed")
            self.status_log.set_status(self.name, root, Status.DONE)

        if self.config.report_path(self.name) is not None:
            from treeflow.reports import save_report

            save_report(self)
        return self.status

    # ── results ──────────────────────────────────────────────────

    @property
    def status(self) -> Status:
        return self.status_log.status(self.name, self.root_item)

    @property
    def failed(self) -> bool:
        return self.status.is_failure

    @property
    def summary(self) -> dict[str, int]:
        """Number of messages per severity name."""
        return self.messages.summary()

    @property
    def log_history(self) -> list[LogEntry]:
        """Messages logged on the root item."""
        return self.root_item.log_history

    def item_status(self, item: WorkItem, task: Task | str | None = None) -> Status:
        return self.status_log.status(task, item)

    def status_counts(self, items: Sequence[WorkItem] | None = None) -> dict[str, int]:
        """Status of each leaf item (or of *items*), counted per status value.

        An item that failed in some task scope counts as failed even when a
        later ``run_always`` task completed on it.
        """
        targets = list(items) if items is not None else self.root_item.leaves()
        counts = Counter(self._final_status(item).value for item in targets)
        return dict(counts)

    def _final_status(self, item: WorkItem) -> Status:
        failures = self.status_log.failed_scopes(item)
        if failures:
            return failures[-1].status
        return self.status_log.status(None, item)

    def failed_items(self) -> list[WorkItem]:
        """Items with at least one task scope that ended failed."""
        return [i for i in self.root_item.walk() if self.status_log.failed_scopes(i)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job.name if self.job else "",
            "run": self.name,
            "status": self.status.value,
            "aborted": self.aborted,
            "started": self.started_at.isoformat(timespec="seconds") if self.started_at else None,
            "finished": self.finished_at.isoformat(timespec="seconds") if self.finished_at else None,
            "options": self.options,
            "summary": self.summary,
            "leaves": self.status_counts(),
            "failed": [i.namepath for i in self.failed_items()],
            "items": self.root_item.to_dict(),
            "status_log": [e.to_dict() for e in self.status_log.entries],
        }


def load_job(
    path: str | Path,
    *,
    config: Config | None = None,
    registry: TaskRegistry | None = None,
) -> Job:
    """Read a YAML/JSON workflow file into a :class:`Job`."""
    data = load_structured(path)
    job = Job.from_config(data, config=config, registry=registry)
    log.debug(f"Loaded workflow '{job.name}' from {path} ({len(job.task_config)} top-level tasks)")
    return job
