"""Build task trees from configuration and apply option overrides to them."""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Sequence

from treeflow.errors import ConfigurationError
from treeflow.tasks.base import Task, TaskGroup
from treeflow.tasks.registry import TaskRegistry, default_registry

TARGET_SEPARATOR = "#"


def build_task(
    config: Mapping[str, Any],
    parent: Task | None = None,
    registry: TaskRegistry | None = None,
) -> Task:
    """Instantiate one task node and, recursively, its ``tasks``.

    A node without ``class`` is a :class:`TaskGroup`. Unknown classes,
    invalid parameter values and leaf tasks without processing logic raise
    :class:`ConfigurationError`.
    """
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"Task configuration must be a mapping, got {type(config).__name__}")
    registry = registry or default_registry
    kind = config.get("class")
    cls = registry.get(str(kind)) if kind else TaskGroup

    try:
        task = cls(config, parent=parent)
    except ConfigurationError as exc:
        where = config.get("name") or kind or cls.__name__
        raise ConfigurationError(f"Task '{where}': {exc}") from exc
    if parent is not None:
        parent.add_subtask(task)

    children = config.get("tasks") or []
    if not isinstance(children, Sequence) or isinstance(children, (str, bytes)):
        raise ConfigurationError(f"Task '{task.namepath}': 'tasks' must be a list")
    for child in children:
        build_task(child, parent=task, registry=registry)

    task.validate()
    return task


def build_tasks(
    configs: Sequence[Mapping[str, Any]],
    registry: TaskRegistry | None = None,
) -> list[Task]:
    """Build the top-level tasks of a workflow (each without a parent)."""
    return [build_task(cfg, registry=registry) for cfg in configs or []]


def walk(tasks: Sequence[Task]) -> Iterator[Task]:
    for task in tasks:
        yield from task.walk()


def find_tasks(tasks: Sequence[Task], target: str) -> list[Task]:
    """Tasks whose name or full name-path equals *target*."""
    return [t for t in walk(tasks) if target in (t.name, t.namepath)]


def split_target(target: str) -> tuple[str, str]:
    """``"Task#param"`` -> ``("Task", "param")``; ``"Task"`` -> ``("Task", "")``."""
    task, _, param = target.partition(TARGET_SEPARATOR)
    return task.strip(), param.strip()


def normalize_overrides(overrides: Mapping[str, Any]) -> list[tuple[str, str, Any]]:
    """Flatten ``{task: {param: value}}`` and ``{"task#param": value}`` into triples."""
    flat: list[tuple[str, str, Any]] = []
    for key, value in overrides.items():
        task, param = split_target(str(key))
        if param:
            flat.append((task, param, value))
        elif isinstance(value, Mapping):
            flat.extend((task, str(p), v) for p, v in value.items())
        else:
            raise ConfigurationError(
                f"Override '{key}' needs a parameter: use '{key}{TARGET_SEPARATOR}<parameter>'"
            )
    return flat


def apply_options(tasks: Sequence[Task], overrides: Mapping[str, Any]) -> list[Task]:
    """Override task options by task name or name-path.

    Every value goes through the parameter's parse/constraint step. A target
    matching no task, or naming an undeclared parameter, is a
    :class:`ConfigurationError`. Returns the tasks that were changed.
    """
    changed: list[Task] = []
    for target, param, value in normalize_overrides(overrides):
        matches = find_tasks(tasks, target)
        if not matches:
            raise ConfigurationError(f"No task matches '{target}'")
        for task in matches:
            try:
                task.set_parameter(param, value)
            except ConfigurationError as exc:
                raise ConfigurationError(f"Task '{task.namepath}': {exc}") from exc
            if task not in changed:
                changed.append(task)
    return changed
