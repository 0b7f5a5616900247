"""Exception classes raised by tasks, the task tree builder and the engine."""

from __future__ import annotations


class WorkflowError(Exception):
    """A task could not process an item.

    Raised from a task hook, the item is marked failed for that task and
    processing continues with the next sibling.
    """


class ConfigurationError(WorkflowError):
    """Invalid task configuration: unknown task kind, bad parameter value, unmatched override."""


class ItemTypeError(WorkflowError):
    """The item handed to a task is not one of the kinds the task accepts."""


class ItemLockedError(WorkflowError):
    """Another process holds a claim on the item; the attempt may be retried."""


class WorkflowAbort(Exception):
    """Stop all further processing of the run."""
