"""Task registry: resolve the ``class`` of a configured task by name."""

from __future__ import annotations

from typing import Callable, Iterator, TypeVar

from treeflow.errors import ConfigurationError
from treeflow.tasks.base import Task, TaskGroup

T = TypeVar("T", bound=type[Task])


class TaskRegistry:
    """Mapping of task-kind identifiers to task classes."""

    def __init__(self, parent: TaskRegistry | None = None) -> None:
        self._classes: dict[str, type[Task]] = {}
        self._parent = parent

    def register(self, cls: type[Task], name: str = "") -> type[Task]:
        if not (isinstance(cls, type) and issubclass(cls, Task)):
            raise TypeError(f"{cls!r} is not a Task subclass")
        key = name or cls.__name__
        existing = self._classes.get(key)
        if existing is not None and existing is not cls:
            raise ValueError(f"Task kind '{key}' is already registered as {existing.__qualname__}")
        self._classes[key] = cls
        return cls

    def get(self, name: str) -> type[Task]:
        """Return the class registered as *name*."""
        cls = self._classes.get(name)
        if cls is not None:
            return cls
        if self._parent is not None:
            return self._parent.get(name)
        raise ConfigurationError(f"Unknown task class: {name}")

    def __contains__(self, name: str) -> bool:
        try:
            self.get(name)
        except ConfigurationError:
            return False
        return True

    def names(self) -> list[str]:
        found = set(self._parent.names()) if self._parent is not None else set()
        found.update(self._classes)
        return sorted(found)

    def __iter__(self) -> Iterator[tuple[str, type[Task]]]:
        for name in self.names():
            yield name, self.get(name)

    def child(self) -> TaskRegistry:
        """A registry that sees every kind of this one plus its own registrations."""
        return TaskRegistry(parent=self)


default_registry = TaskRegistry()
default_registry.register(Task)
default_registry.register(TaskGroup)


def register_task(cls: T | None = None, *, name: str = "") -> T | Callable[[T], T]:
    """Class decorator registering a task kind in the default registry.

    Usable bare (``@register_task``) or with a name
    (``@register_task(name="Collect")``).
    """

    def _register(klass: T) -> T:
        default_registry.register(klass, name)
        return klass

    if cls is not None:
        return _register(cls)
    return _register


def get_task_class(name: str) -> type[Task]:
    return default_registry.get(name)
