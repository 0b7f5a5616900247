"""File-system tasks: collect a directory tree, verify checksums, rename items."""

from __future__ import annotations

import re

from treeflow.errors import WorkflowError
from treeflow.items import DirItem, FileItem, WorkItem
from treeflow.parameters import Parameter
from treeflow.tasks.base import Task
from treeflow.tasks.registry import register_task

CHECKSUM_TYPES = ("MD5", "SHA1", "SHA256", "SHA512")


@register_task
class CollectFiles(Task):
    """Fill the item tree from the file system.

    On a :class:`DirItem` the directory entries are added as children; on any
    other item a :class:`DirItem` for ``location`` is added first and
    collected.
    """

    parameters = (
        Parameter("location", ".", "directory to collect when the item is not a directory"),
        Parameter("selection", "", "regular expression file names must match"),
        Parameter("subdirs", True, "also collect the contents of sub-directories"),
    )

    def process(self, item: WorkItem) -> None:
        if isinstance(item, DirItem):
            self._collect(item)
        elif isinstance(item, FileItem):
            return
        else:
            try:
                directory = DirItem(self.parameter("location"))
            except (OSError, NotADirectoryError) as exc:
                raise WorkflowError(f"Cannot collect '{self.parameter('location')}': {exc}") from exc
            item.add_item(directory)
            self._collect(directory)

    def _collect(self, directory: DirItem) -> None:
        if directory.items:
            self.debug("Already collected", item=directory)
            return
        try:
            directory.collect(
                recursive=self.parameter("subdirs"),
                selection=self.parameter("selection"),
            )
        except (OSError, re.error) as exc:
            raise WorkflowError(f"Cannot collect '{directory.filename}': {exc}") from exc
        self.debug("Collected %d entries", len(directory.items), item=directory)


@register_task
class ChecksumTester(Task):
    """Record or verify a checksum of file items.

    A file without ``properties["checksum"]`` gets one; a file that has one
    must match it or the item fails.
    """

    parameters = (
        Parameter("checksum_type", "MD5", "digest algorithm", constraint=CHECKSUM_TYPES),
    )

    def process(self, item: WorkItem) -> None:
        if not isinstance(item, FileItem) or isinstance(item, DirItem):
            return
        algorithm = self.parameter("checksum_type").upper()
        try:
            checksum = item.checksum(algorithm)
        except OSError as exc:
            raise WorkflowError(f"Cannot read {item.long_name}: {exc}") from exc

        expected = item.properties.get("checksum")
        if expected is None:
            item.properties["checksum"] = checksum
            item.properties["checksum_type"] = algorithm
            self.debug("%s %s", algorithm, checksum, item=item)
        elif str(expected).lower() != checksum:
            raise WorkflowError(f"Checksum test failed for {item.long_name}")


def camelize(name: str) -> str:
    """``test_dir_item.rb`` -> ``TestDirItem.rb``; the extension is left alone."""
    stem, dot, ext = name.partition(".")
    parts = re.split(r"[_\-\s]+", stem)
    return "".join(p[:1].upper() + p[1:] for p in parts if p) + dot + ext


@register_task
class CamelizeName(Task):
    def process(self, item: WorkItem) -> None:
        new_name = camelize(item.name)
        if new_name != item.name:
            self.debug("Renamed to %s", new_name, item=item)
            item.name = new_name
