"""Tests for SyncProgressTracker counters and ETA."""

from __future__ import annotations

import pytest

from gitpulse.engines.sync.progress import SyncProgressTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_initial_state_is_idle():
    progress = SyncProgressTracker().snapshot()
    assert progress.status == "idle"
    assert progress.total == 0


def test_sequential_eta(clock):
    tracker = SyncProgressTracker(clock=clock)
    tracker.reset(total=4, batch_size=1)

    tracker.start_repository(1, "acme/a")
    clock.advance(10)
    tracker.finish_repository(1, success=True)

    progress = tracker.snapshot()
    assert progress.current == 1
    assert progress.completed == 1
    assert progress.estimated_remaining_seconds == pytest.approx(30.0)

    tracker.start_repository(2, "acme/b")
    clock.advance(30)
    tracker.finish_repository(2, success=False)

    progress = tracker.snapshot()
    # 40s over two repositories, two left
    assert progress.estimated_remaining_seconds == pytest.approx(40.0)
    assert progress.failed == 1


def test_batched_eta(clock):
    tracker = SyncProgressTracker(clock=clock)
    tracker.reset(total=5, batch_size=2)

    for repo_id in (1, 2):
        tracker.start_repository(repo_id)
    clock.advance(20)
    tracker.finish_repository(1, success=True)
    tracker.finish_repository(2, success=True)
    # no batch finished yet: no estimate
    assert tracker.snapshot().estimated_remaining_seconds is None

    tracker.finish_batch()
    # 3 repositories left = 2 batches at 20s each
    assert tracker.snapshot().estimated_remaining_seconds == pytest.approx(40.0)


def test_start_is_idempotent_for_retries():
    tracker = SyncProgressTracker()
    tracker.reset(total=1)
    tracker.start_repository(1, "acme/a")
    tracker.start_repository(1, "acme/a")
    progress = tracker.snapshot()
    assert progress.in_progress == 1
    assert progress.current_repository == "acme/a"


def test_finalize_status(clock):
    tracker = SyncProgressTracker(clock=clock)
    tracker.reset(total=2)
    tracker.start_repository(1)
    tracker.finish_repository(1, success=True)
    tracker.skip_repository(2)
    tracker.finalize()

    progress = tracker.snapshot()
    assert progress.status == "completed"
    assert progress.skipped == 1
    assert progress.current == 2
    assert progress.in_progress == 0
    assert progress.estimated_remaining_seconds == 0.0
    assert progress.end_time is not None


def test_finalize_failed_when_any_repository_failed():
    tracker = SyncProgressTracker()
    tracker.reset(total=2)
    tracker.finish_repository(1, success=True)
    tracker.finish_repository(2, success=False)
    tracker.finalize()
    assert tracker.snapshot().status == "failed"


def test_snapshot_is_a_copy():
    tracker = SyncProgressTracker()
    tracker.reset(total=3)
    before = tracker.snapshot()
    tracker.finish_repository(1, success=True)
    assert before.completed == 0
    assert tracker.snapshot().completed == 1


def test_callbacks_receive_snapshots_and_errors_are_contained():
    tracker = SyncProgressTracker()
    seen = []

    def broken(progress):
        raise RuntimeError("listener bug")

    tracker.callbacks.append(broken)
    tracker.callbacks.append(seen.append)
    tracker.reset(total=1)
    tracker.finish_repository(1, success=True)

    assert [p.status for p in seen] == ["running", "running"]
    assert seen[-1].completed == 1


def test_to_dict_serialises_times():
    tracker = SyncProgressTracker()
    tracker.reset(total=1)
    data = tracker.snapshot().to_dict()
    assert isinstance(data["start_time"], str)
    assert data["end_time"] is None
