"""Data models for the task pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Task:
    """A unit of work; ``type`` selects the registered handler."""

    id: str
    type: str
    payload: Any = None
    priority: int = 0  # higher runs first


@dataclass
class TaskResult:
    """Outcome of one submitted task — produced for every task, success or not."""

    task_id: str
    success: bool
    start_time: datetime
    end_time: datetime
    result: Any = None
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False)
    attempts: int = 0
    timed_out: bool = False

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()
