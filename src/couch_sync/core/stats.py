"""
Replication statistics.

Per-table counters roll up into one ``RunStats`` per run. The
``ProgressReporter`` turns the run-wide copied-record counter into a
percentage and a step message after every flush.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_ERRORS = "succeeded-with-errors"
    FAILED = "failed"


STATUS_TEXT_SUCCESS = "Successfully completed"
STATUS_TEXT_WITH_MESSAGES = "Succesfully completed with messages"
STATUS_TEXT_FAILURE = "Unsuccessful: {error}"


@dataclass
class TableStats:
    """Statistics for one replicated table."""

    table_name: str
    table_label: str
    db_name: str
    num_records: int = 0
    errors: list[str] = field(default_factory=list)
    status_message: str | None = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "table_label": self.table_label,
            "db_name": self.db_name,
            "num_records": self.num_records,
            "errors": list(self.errors),
            "status_message": self.status_message,
        }


@dataclass
class RunStats:
    """Statistics for a whole run, shared by every table replicator."""

    expected_total_records: int = 0
    num_records: int = 0
    copied: int = 0
    status: RunStatus = RunStatus.PENDING
    status_text: str = ""
    table_stats: dict[str, TableStats] = field(default_factory=dict)
    start_time: float = 0.0
    end_time: float = 0.0

    def add_table_stats(self, stats: TableStats) -> None:
        """Register (or refresh) the stats of a table."""
        self.table_stats[stats.table_name] = stats

    @property
    def has_errors(self) -> bool:
        return any(s.has_errors for s in self.table_stats.values())

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    @property
    def records_per_second(self) -> float:
        duration = self.duration_seconds
        if duration > 0:
            return self.copied / duration
        return 0.0


class ProgressSink(Protocol):
    def set_percent_completion(self, percent: float) -> None: ...

    def set_step_message(self, message: str) -> None: ...


def percent_complete(copied: int, expected: int) -> float:
    """
    Percentage of expected records copied, rounded to one decimal.

    Zero until something has been copied, and while the expected total
    is unknown.
    """
    if copied == 0 or expected <= 0:
        return 0.0
    return round(copied / expected * 100, 1)


class ProgressReporter:
    """
    Run-wide progress accumulator.

    Every table replicator of a run shares one reporter, so concurrent tables
    add into a single non-decreasing counter.
    """

    def __init__(self, run_stats: RunStats, sink: ProgressSink) -> None:
        self.run_stats = run_stats
        self.sink = sink

    @property
    def copied(self) -> int:
        return self.run_stats.copied

    def record_flush(self, added: int) -> float:
        """Account for a flushed batch and publish the new progress."""
        self.run_stats.copied += added
        expected = self.run_stats.expected_total_records
        percent = percent_complete(self.run_stats.copied, expected)
        self.sink.set_percent_completion(percent)
        self.sink.set_step_message(
            f"{self.run_stats.copied} documents copied to CouchDB out of "
            f"{expected} ({percent:.1f}%)"
        )
        return percent
