"""Message history: severity-leveled messages tagged with task and item paths."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any


class Severity(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    FATAL = 50

    @classmethod
    def coerce(cls, value: Severity | str | int) -> Severity:
        if isinstance(value, Severity):
            return value
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        if name == "WARN":
            name = "WARNING"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown severity: {value}") from None


@dataclass
class LogEntry:
    severity: Severity
    task_path: str
    item_path: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def format(self) -> str:
        """``<task path> - <item path> : <message>``."""
        return f"{self.task_path} - {self.item_path} : {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.name,
            "task": self.task_path,
            "item": self.item_path,
            "message": self.message,
            "created": self.created_at.isoformat(timespec="milliseconds"),
        }

    def __str__(self) -> str:
        return f"{self.severity.name} -- {self.format()}"


class MessageLog:
    """Ordered message history of one run."""

    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def add(
        self,
        severity: Severity | str,
        task_path: str,
        item_path: str,
        message: str,
    ) -> LogEntry:
        entry = LogEntry(
            severity=Severity.coerce(severity),
            task_path=task_path,
            item_path=item_path,
            message=message,
        )
        self.entries.append(entry)
        return entry

    def summary(self) -> dict[str, int]:
        """Number of messages per severity name (only severities that occurred)."""
        counts = Counter(e.severity for e in self.entries)
        return {sev.name: counts[sev] for sev in Severity if counts[sev]}

    def count(self, severity: Severity | str) -> int:
        sev = Severity.coerce(severity)
        return sum(1 for e in self.entries if e.severity == sev)

    def for_item(self, item_path: str) -> list[LogEntry]:
        return [e for e in self.entries if e.item_path == item_path]

    def for_task(self, task_path: str) -> list[LogEntry]:
        return [e for e in self.entries if e.task_path == task_path]

    def at_least(self, severity: Severity | str) -> list[LogEntry]:
        sev = Severity.coerce(severity)
        return [e for e in self.entries if e.severity >= sev]
