"""Task classes. Importing the package registers the built-in task kinds."""

from treeflow.tasks.base import Task, TaskGroup
from treeflow.tasks.registry import TaskRegistry, default_registry, get_task_class, register_task
from treeflow.tasks import analyzer, files  # noqa: F401  (registration)

__all__ = [
    "Task",
    "TaskGroup",
    "TaskRegistry",
    "default_registry",
    "get_task_class",
    "register_task",
]
