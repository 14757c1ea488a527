"""Data models for the sync engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

SyncStatus = Literal["idle", "running", "completed", "failed"]


@dataclass
class SyncResult:
    """Outcome of syncing one repository — returned whether or not it succeeded."""

    repository_id: int
    repository_name: str
    success: bool
    message: str
    start_time: datetime
    end_time: datetime
    commit_count: int = 0
    pull_request_count: int = 0
    review_count: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    strategy: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat()
        return data


@dataclass
class SyncProgress:
    """Point-in-time view of a sync run."""

    total: int = 0
    current: int = 0  # repositories processed so far
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    in_progress: int = 0
    status: SyncStatus = "idle"
    start_time: datetime | None = None
    end_time: datetime | None = None
    estimated_remaining_seconds: float | None = None
    current_repository: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("start_time", "end_time"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
