"""Runtime context for jobs and runs: console level, work directory, report settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "FATAL")


@dataclass
class Config:
    """Explicit context handed to :class:`~treeflow.job.Job` and every run it makes."""

    # Console
    verbose: bool = False
    console_level: str = ""

    # Files
    work_dir: str = ""
    report_name: str = "report.json"

    # Misc
    echo_messages: bool = True

    def __post_init__(self) -> None:
        if not self.console_level:
            self.console_level = os.environ.get("TREEFLOW_LOG_LEVEL", "").upper() or (
                "DEBUG" if self.verbose else "INFO"
            )
        self.console_level = self.console_level.upper()
        if self.console_level == "WARN":
            self.console_level = "WARNING"
        if self.console_level not in LOG_LEVELS:
            raise ValueError(
                f"Unknown log level: {self.console_level} (expected one of {', '.join(LOG_LEVELS)})"
            )
        if not self.work_dir:
            self.work_dir = os.environ.get("TREEFLOW_WORK_DIR", "")

    def report_path(self, run_name: str) -> Path | None:
        """Return where the JSON report of *run_name* goes, or ``None`` without a work dir."""
        if not self.work_dir:
            return None
        return Path(self.work_dir) / run_name / self.report_name
