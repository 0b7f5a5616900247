"""Tests for treeflow.engine: traversal order, failure propagation and retries."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from treeflow.engine import Outcome
from treeflow.errors import ItemLockedError, ItemTypeError, WorkflowAbort, WorkflowError
from treeflow.items import FileItem, WorkItem
from treeflow.parameters import Parameter
from treeflow.status import Status
from treeflow.tasks.base import Task, TaskGroup
from treeflow.tasks.files import CamelizeName

CALLS: list[tuple[str, str, str]] = []


class Recorder(Task):
    """Records every hook invocation."""

    def pre_process(self, item):
        CALLS.append((self.namepath, item.name, "pre"))

    def process(self, item):
        CALLS.append((self.namepath, item.name, "process"))

    def post_process(self, item):
        CALLS.append((self.namepath, item.name, "post"))


class Outcomes(Task):
    """Ends the way ``config`` says, on every item or only on ``fail_on``."""

    parameters = (
        Parameter("config", "success", constraint=("success", "async_halt", "fail", "error", "abort", "crash")),
        Parameter("fail_on", "", "only misbehave on the item with this name"),
    )

    def process(self, item):
        CALLS.append((self.namepath, item.name, "process"))
        if self.parameter("fail_on") and item.name != self.parameter("fail_on"):
            return
        mode = self.parameter("config")
        if mode == "async_halt":
            self.set_item_status(Status.ASYNC_HALT, item)
            self.error("Task failed with async_halt status", item=item)
        elif mode == "fail":
            self.set_item_status(Status.FAILED, item)
            self.error("Task failed with failed status", item=item)
        elif mode == "error":
            raise WorkflowError("Task failed with WorkflowError exception")
        elif mode == "abort":
            raise WorkflowAbort("Task failed with WorkflowAbort exception")
        elif mode == "crash":
            raise RuntimeError("boom")


class Locked(Task):
    parameters = (Parameter("locked_times", 1),)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.attempts = 0

    def process(self, item):
        self.attempts += 1
        if self.attempts <= self.parameter("locked_times"):
            raise ItemLockedError(f"{item.name} is claimed by another process")


class FilesOnly(Task):
    item_types = (FileItem,)

    def process(self, item):
        CALLS.append((self.namepath, item.name, "process"))


@pytest.fixture(autouse=True)
def _clear_calls():
    CALLS.clear()
    yield
    CALLS.clear()


def _group(name: str = "G", *subtasks: Task, **options) -> TaskGroup:
    group = TaskGroup({"name": name, **options})
    for sub in subtasks:
        group.add_subtask(sub)
    return group


def _processed(task_path: str | None = None) -> list[str]:
    return [item for path, item, hook in CALLS if hook == "process" and (task_path is None or path == task_path)]


def _statuses(engine, task, item) -> list[Status]:
    return [e.status for e in engine.status_log.entries_for(item, task)]


# ═══════════════════════════════════════════════════════════════════
#  Single item
# ═══════════════════════════════════════════════════════════════════


class TestSingleItem:
    """Hook order and completion on one item."""

    def test_hooks_in_order(self, engine):
        task = Recorder({"name": "A"})
        item = WorkItem("x")
        engine.bind([task])
        assert engine.run(task, item) is Outcome.CONTINUE
        assert [hook for _, _, hook in CALLS] == ["pre", "process", "post"]
        assert _statuses(engine, task, item) == [Status.STARTED, Status.DONE]

    def test_subtasks_run_between_process_and_post(self, engine):
        parent = Recorder({"name": "P"})
        parent.add_subtask(Recorder({"name": "S"}))
        engine.bind([parent])
        engine.run(parent, WorkItem("x"))
        assert CALLS == [
            ("P", "x", "pre"),
            ("P", "x", "process"),
            ("P/S", "x", "pre"),
            ("P/S", "x", "process"),
            ("P/S", "x", "post"),
            ("P", "x", "post"),
        ]

    def test_failed_item_is_skipped(self, engine):
        task = Recorder({"name": "A"})
        item = WorkItem("x")
        engine.bind([task])
        engine.status_log.set_status("Earlier", item, Status.FAILED)
        assert engine.run(task, item) is Outcome.ITEM_FAILED
        assert CALLS == []
        assert len(engine.status_log) == 1
        assert len(engine.messages) == 0

    def test_run_always_ignores_failure(self, engine):
        task = Recorder({"name": "A", "run_always": True})
        item = WorkItem("x")
        engine.bind([task])
        engine.status_log.set_status("Earlier", item, Status.FAILED)
        assert engine.run(task, item) is Outcome.CONTINUE
        assert _processed() == ["x"]

    @pytest.mark.parametrize("config,status", [("fail", Status.FAILED), ("async_halt", Status.ASYNC_HALT)])
    def test_task_sets_failure_status(self, engine, config, status):
        task = Outcomes({"name": "T", "config": config})
        item = WorkItem("x")
        engine.bind([task])
        assert engine.run(task, item) is Outcome.ITEM_FAILED
        assert _statuses(engine, task, item) == [Status.STARTED, status]

    def test_workflow_error_fails_item(self, engine):
        task = Outcomes({"name": "T", "config": "error"})
        item = WorkItem("x")
        engine.bind([task])
        assert engine.run(task, item) is Outcome.ITEM_FAILED
        assert engine.status_log.status(task, item) == Status.FAILED
        errors = engine.messages.at_least("ERROR")
        assert [e.message for e in errors] == ["Task failed with WorkflowError exception"]
        assert item.log_history[-1].message == "Task failed with WorkflowError exception"

    def test_unexpected_exception_logged_fatal(self, engine):
        task = Outcomes({"name": "T", "config": "crash"})
        item = WorkItem("x")
        engine.bind([task])
        assert engine.run(task, item) is Outcome.ITEM_FAILED
        fatal = [e for e in engine.messages if e.severity.name == "FATAL"]
        assert [e.message for e in fatal] == ["Exception occurred: boom"]
        assert any("RuntimeError: boom" in e.message for e in engine.messages.for_task("T"))
        assert engine.status_log.status(task, item) == Status.FAILED

    def test_abort_signal(self, engine):
        task = Outcomes({"name": "T", "config": "abort"})
        item = WorkItem("x")
        engine.bind([task])
        assert engine.run(task, item) is Outcome.ABORT_RUN
        assert engine.status_log.status(task, item) == Status.FAILED


# ═══════════════════════════════════════════════════════════════════
#  Subtasks
# ═══════════════════════════════════════════════════════════════════


class TestSubtasks:
    def test_failed_item_skips_later_subtasks(self, engine):
        group = _group("G", Outcomes({"name": "Validate", "config": "error"}), Recorder({"name": "Rename"}))
        item = WorkItem("x")
        engine.bind([group])
        assert engine.run(group, item) is Outcome.ITEM_FAILED
        assert _processed("G/Rename") == []
        # no done for the group scope
        assert _statuses(engine, group, item) == [Status.STARTED]

    def test_run_always_subtask_still_runs(self, engine):
        group = _group(
            "G",
            Outcomes({"name": "Validate", "config": "error"}),
            Recorder({"name": "Report", "run_always": True}),
        )
        item = WorkItem("x")
        engine.bind([group])
        engine.run(group, item)
        assert _processed("G/Report") == ["x"]

    def test_abort_on_error_stops_siblings_not_items(self, engine, make_items):
        group = _group(
            "G",
            Outcomes({"name": "Validate", "config": "fail", "fail_on": "a", "abort_on_error": True}),
            Recorder({"name": "Always", "run_always": True}),
            subitems=True,
        )
        root = make_items("root", ["a", "b"])
        engine.bind([group])
        engine.run(group, root)
        assert _processed("G/Validate") == ["a", "b"]
        assert _processed("G/Always") == ["b"]

    def test_abort_unwinds_everything(self, engine, make_items):
        group = _group(
            "G",
            Outcomes({"name": "P", "config": "abort"}),
            Recorder({"name": "B", "run_always": True}),
            subitems=True,
        )
        root = make_items("root", ["x", "y"])
        engine.bind([group])
        assert engine.run(group, root) is Outcome.ABORT_RUN
        assert _processed() == ["x"]
        assert engine.status_log.status("G/P", "root/x") == Status.FAILED
        assert engine.status_log.status(group, "root/x") == Status.FAILED
        assert engine.status_log.status(group, root) == Status.FAILED
        assert engine.status_log.entries_for("root/y") == []

    def test_trace_messages(self, engine, make_items):
        group = _group("G", Recorder({"name": "A"}), Recorder({"name": "B"}), subitems=True)
        root = make_items("root", ["x"])
        engine.bind([group])
        engine.run(group, root)
        assert [e.format() for e in engine.messages] == [
            "G - root : Started",
            "G - root : Processing subitem (1/1): x",
            "G - root/x : Started",
            "G - root/x : Running subtask (1/2): A",
            "G/A - root/x : Started",
            "G/A - root/x : Completed",
            "G - root/x : Running subtask (2/2): B",
            "G/B - root/x : Started",
            "G/B - root/x : Completed",
            "G - root/x : Completed",
            "G - root : 1 of 1 subitems passed",
            "G - root : Completed",
        ]
        assert engine.messages.summary() == {"DEBUG": 12}


# ═══════════════════════════════════════════════════════════════════
#  Subitems mode
# ═══════════════════════════════════════════════════════════════════


class TestSubitems:
    def test_zero_children(self, engine):
        task = Recorder({"name": "T", "subitems": True})
        root = WorkItem("root")
        engine.bind([task])
        assert engine.run(task, root) is Outcome.CONTINUE
        assert CALLS == []
        assert _statuses(engine, task, root) == [Status.STARTED, Status.DONE]
        assert [e.message for e in engine.messages] == ["Started", "Completed"]

    def test_item_itself_not_processed(self, engine, make_items):
        task = Recorder({"name": "T", "subitems": True})
        root = make_items("root", ["a", "b"])
        engine.bind([task])
        engine.run(task, root)
        assert _processed() == ["a", "b"]

    def test_partial_failure_leaves_parent_started(self, engine, make_items):
        task = Outcomes({"name": "T", "config": "error", "fail_on": "a", "subitems": True})
        root = make_items("root", ["a", "b"])
        engine.bind([task])
        assert engine.run(task, root) is Outcome.CONTINUE
        assert engine.status_log.status(task, root) == Status.STARTED
        assert not engine.is_failed(root)
        assert engine.status_log.status(task, "root/b") == Status.DONE

    def test_all_children_failed(self, engine, make_items):
        task = Outcomes({"name": "T", "config": "error", "subitems": True})
        root = make_items("root", ["a", "b"])
        engine.bind([task])
        assert engine.run(task, root) is Outcome.ITEM_FAILED
        assert engine.status_log.status(task, root) == Status.FAILED
        assert "All subitems have failed" in [e.message for e in engine.messages]

    def test_already_failed_children_left_out(self, engine, make_items):
        first = Outcomes({"name": "First", "config": "error", "fail_on": "a", "subitems": True})
        second = Recorder({"name": "Second", "subitems": True})
        root = make_items("root", ["a", "b"])
        engine.bind([first, second])
        engine.run_tasks([first, second], root)
        assert _processed("Second") == ["b"]
        assert engine.status_log.status(second, root) == Status.DONE
        messages = [e.message for e in engine.messages.for_task("Second")]
        assert "Processing subitem (1/1): b" in messages
        assert not any("failed" in m for m in messages)

    def test_run_always_visits_failed_children(self, engine, make_items):
        first = Outcomes({"name": "First", "config": "error", "fail_on": "a", "subitems": True})
        second = Recorder({"name": "Second", "subitems": True, "run_always": True})
        root = make_items("root", ["a", "b"])
        engine.bind([first, second])
        engine.run_tasks([first, second], root)
        assert _processed("Second") == ["a", "b"]

    def test_wrong_child_type_fails_parent_scope(self, engine, make_items):
        task = FilesOnly({"name": "F", "subitems": True})
        root = make_items("root", ["x"])
        engine.bind([task])
        with pytest.raises(ItemTypeError):
            engine.run(task, root)
        assert _statuses(engine, task, root) == [Status.STARTED, Status.FAILED]
        assert engine.status_log.entries_for("root/x") == []


# ═══════════════════════════════════════════════════════════════════
#  Recursive mode
# ═══════════════════════════════════════════════════════════════════


class TestRecursive:
    def test_preorder_parent_before_children(self, engine, make_items):
        group = _group("G", Recorder({"name": "S"}), recursive=True)
        root = make_items("root", [("a", ["a1", "a2"]), "b"])
        engine.bind([group])
        assert engine.run(group, root) is Outcome.CONTINUE
        assert _processed("G/S") == ["root", "a", "a1", "a2", "b"]
        for item in root.walk():
            assert engine.status_log.status(group, item) == Status.DONE

    def test_failed_child_does_not_stop_siblings(self, engine, make_items):
        group = _group("G", Outcomes({"name": "V", "config": "error", "fail_on": "a"}), recursive=True)
        root = make_items("root", ["a", "b"])
        engine.bind([group])
        assert engine.run(group, root) is Outcome.CONTINUE
        assert _processed("G/V") == ["root", "a", "b"]
        assert engine.status_log.status(group, root) == Status.DONE
        assert "1 of 2 subitems passed" in [e.message for e in engine.messages]

    def test_abort_recursion(self, engine, make_items):
        group = _group(
            "G",
            Outcomes({"name": "V", "config": "error", "fail_on": "a"}),
            recursive=True,
            abort_recursion=True,
        )
        root = make_items("root", ["a", "b"])
        engine.bind([group])
        engine.run(group, root)
        assert _processed("G/V") == ["root", "a"]
        assert engine.status_log.entries_for("root/b") == []

    def test_all_children_failed_fails_parent(self, engine, make_items):
        group = _group("G", Outcomes({"name": "V", "config": "error", "fail_on": "a"}), recursive=True)
        root = make_items("root", [("p", ["a"])])
        engine.bind([group])
        engine.run(group, root)
        assert engine.status_log.status(group, "root/p") == Status.FAILED

    def test_failed_child_stays_failed_after_parent_rename(self, engine, make_items):
        check = _group("Check", Outcomes({"name": "V", "config": "error", "fail_on": "b"}), subitems=True, recursive=True)
        rename = CamelizeName({"subitems": True})
        after = _group("After", Recorder({"name": "R"}), subitems=True, recursive=True)
        root = make_items("root", [("my_dir", ["a", "b"])])
        engine.bind([check, rename, after])
        engine.run_tasks([check, rename, after], root)

        directory = root.items[0]
        bad = directory.items[1]
        assert directory.name == "MyDir"
        assert _processed("After/R") == ["MyDir", "a"]
        assert engine.is_failed(bad)
        assert engine.status_log.entries_for(bad, after) == []
        assert engine.status_log.status("Check/V", "root/MyDir/b") == Status.FAILED


# ═══════════════════════════════════════════════════════════════════
#  Retry & type guard
# ═══════════════════════════════════════════════════════════════════


class TestRetry:
    def test_retry_then_succeed(self, engine):
        task = Locked({"name": "L", "retry_count": 2, "retry_interval": 5})
        item = WorkItem("x")
        engine.bind([task])
        with patch("treeflow.engine.time.sleep") as sleep:
            assert engine.run(task, item) is Outcome.CONTINUE
        sleep.assert_called_once_with(5.0)
        assert task.attempts == 2
        assert _statuses(engine, task, item) == [Status.STARTED, Status.DONE]

    def test_retries_exhausted(self, engine):
        task = Locked({"name": "L", "locked_times": 5, "retry_count": 2, "retry_interval": 1})
        item = WorkItem("x")
        engine.bind([task])
        with patch("treeflow.engine.time.sleep") as sleep:
            assert engine.run(task, item) is Outcome.ITEM_FAILED
        assert sleep.call_count == 2
        assert task.attempts == 3
        assert engine.status_log.status(task, item) == Status.FAILED

    def test_no_retry_by_default(self, engine):
        task = Locked({"name": "L"})
        item = WorkItem("x")
        engine.bind([task])
        with patch("treeflow.engine.time.sleep") as sleep:
            assert engine.run(task, item) is Outcome.ITEM_FAILED
        sleep.assert_not_called()


class TestTypeGuard:
    def test_wrong_item_type_raises_before_status(self, engine):
        task = FilesOnly({"name": "F"})
        item = WorkItem("x")
        engine.bind([task])
        with pytest.raises(ItemTypeError, match="expects FileItem"):
            engine.run(task, item)
        assert len(engine.status_log) == 0
        assert CALLS == []

    def test_type_error_fails_calling_item(self, engine):
        group = _group("G", FilesOnly({"name": "F"}))
        item = WorkItem("x")
        engine.bind([group])
        assert engine.run(group, item) is Outcome.ITEM_FAILED
        assert engine.status_log.status(group, item) == Status.FAILED
        assert engine.status_log.entries_for(item, "G/F") == []
