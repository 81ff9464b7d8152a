"""
Task model — one install/update operation inside a batch.

State machine::

    pending → running → done
                      ↘ failed

``done`` and ``failed`` are absorbing. Only the runner's dispatcher
thread writes to a task; everything else reads.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

from gobelt.core.models.binary import BinaryEntry


class TaskState(StrEnum):
    """Task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.DONE, TaskState.FAILED)


class TaskMode(StrEnum):
    """What a batch does with each binary."""

    INSTALL = "install"
    UPDATE = "update"


@dataclass
class Task:
    """A single binary being installed or updated."""

    binary: BinaryEntry
    state: TaskState = TaskState.PENDING
    output: list[str] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    process: Optional[subprocess.Popen] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.binary.name

    @property
    def elapsed(self) -> Optional[float]:
        """Seconds spent running (live while running, frozen once finished)."""
        if self.started_at is None:
            return None
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        elapsed = self.elapsed
        return {
            "name": self.name,
            "source": self.binary.source,
            "state": self.state.value,
            "output": list(self.output),
            "elapsed_s": round(elapsed, 2) if elapsed is not None else None,
        }


@dataclass
class RunnerStats:
    """Task counts per state for the current batch."""

    total: int = 0
    pending: int = 0
    running: int = 0
    done: int = 0
    failed: int = 0

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> RunnerStats:
        stats = cls(total=len(tasks))
        for task in tasks:
            attr = task.state.value
            setattr(stats, attr, getattr(stats, attr) + 1)
        return stats

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "running": self.running,
            "done": self.done,
            "failed": self.failed,
        }
