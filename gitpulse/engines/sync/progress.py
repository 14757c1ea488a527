"""SyncProgressTracker — counters and ETA for one sync run."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

import structlog

from gitpulse.engines.sync.models import SyncProgress

log = structlog.get_logger("gitpulse.engine")


class SyncProgressTracker:
    """Mutable progress state for one orchestrator run.

    ETA: with ``batch_size == 1`` the average time per processed repository
    is extrapolated to the remaining ones; with larger batches the average
    time per finished batch is extrapolated to the remaining batches.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._state = SyncProgress()
        self._batch_size = 1
        self._batches_done = 0
        self._started: float | None = None
        self._active: dict[int, str] = {}
        self.callbacks: list[Callable[[SyncProgress], None]] = []

    def reset(self, total: int, batch_size: int = 1) -> None:
        self._state = SyncProgress(
            total=total,
            status="running",
            start_time=datetime.now(timezone.utc),
        )
        self._batch_size = max(1, batch_size)
        self._batches_done = 0
        self._started = self._clock()
        self._active.clear()
        self._notify()

    def start_repository(self, repository_id: int, name: str | None = None) -> None:
        """Mark a repository as running; repeated calls (retries) are no-ops."""
        if repository_id in self._active:
            return
        self._active[repository_id] = name or str(repository_id)
        self._state.in_progress = len(self._active)
        self._state.current_repository = self._active[repository_id]
        self._notify()

    def finish_repository(self, repository_id: int, success: bool) -> None:
        self._active.pop(repository_id, None)
        self._state.in_progress = len(self._active)
        if success:
            self._state.completed += 1
        else:
            self._state.failed += 1
        self._state.current += 1
        self._update_eta()
        self._notify()

    def skip_repository(self, repository_id: int) -> None:
        self._state.skipped += 1
        self._state.current += 1
        self._update_eta()
        self._notify()

    def finish_batch(self) -> None:
        self._batches_done += 1
        self._update_eta()

    def finalize(self) -> None:
        """Terminal status: ``failed`` if any repository failed, else ``completed``."""
        self._state.status = "failed" if self._state.failed else "completed"
        self._state.end_time = datetime.now(timezone.utc)
        self._state.in_progress = 0
        self._state.current_repository = None
        self._state.estimated_remaining_seconds = 0.0
        self._active.clear()
        log.info(
            "sync.progress_final",
            total=self._state.total,
            completed=self._state.completed,
            failed=self._state.failed,
            skipped=self._state.skipped,
            status=self._state.status,
        )
        self._notify()

    def snapshot(self) -> SyncProgress:
        return replace(self._state)

    # ── internal ──────────────────────────────────────────────────────────

    def _update_eta(self) -> None:
        if self._started is None:
            return
        elapsed = self._clock() - self._started
        remaining = max(0, self._state.total - self._state.current)
        if remaining == 0:
            self._state.estimated_remaining_seconds = 0.0
            return

        if self._batch_size == 1:
            if self._state.current == 0:
                return
            per_item = elapsed / self._state.current
            self._state.estimated_remaining_seconds = per_item * remaining
            return

        if self._batches_done == 0:
            return
        per_batch = elapsed / self._batches_done
        # Repositories of an unfinished batch are still counted as remaining.
        remaining_batches = math.ceil(remaining / self._batch_size)
        self._state.estimated_remaining_seconds = per_batch * remaining_batches

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for cb in self.callbacks:
            try:
                cb(snapshot)
            except Exception:
                log.debug("sync.progress_callback_error", exc_info=True)
