"""Tests for SyncOrchestrator with a fake collector factory."""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from gitpulse.dao import RepositoryDAO
from gitpulse.engines.collector.errors import PermanentRemoteError, TransientRemoteError
from gitpulse.engines.collector.models import CollectionResult
from gitpulse.engines.sync import SyncOrchestrator, SyncResult
from gitpulse.models import Repository
from gitpulse.services import NoRepositoriesError
from gitpulse.services.repository_service import EPOCH, RepositoryService


class FakeCollectors:
    """Collector factory whose per-repository outcome is scripted.

    An outcome is an exception to raise, an ``asyncio.Event`` to wait on, or
    a list of those consumed one per attempt.  Anything else succeeds.
    """

    def __init__(self, outcomes=None, delay: float = 0.0, on_enter=None):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.on_enter = on_enter
        self.calls: Counter[str] = Counter()
        self.running = 0
        self.peak = 0

    @asynccontextmanager
    async def __call__(self, session_factory, repository: Repository):
        yield _FakeCollector(self, session_factory, repository)


class _FakeCollector:
    def __init__(self, owner: FakeCollectors, session_factory, repository: Repository):
        self._owner = owner
        self._session_factory = session_factory
        self._repository = repository

    async def sync_all(self) -> CollectionResult:
        owner = self._owner
        name = self._repository.full_name
        owner.calls[name] += 1
        owner.running += 1
        owner.peak = max(owner.peak, owner.running)
        try:
            if owner.on_enter is not None:
                await owner.on_enter(self._session_factory, self._repository)
            await asyncio.sleep(owner.delay)
            outcome = owner.outcomes.get(name)
            if isinstance(outcome, list):
                outcome = outcome.pop(0) if outcome else None
            if isinstance(outcome, asyncio.Event):
                await outcome.wait()
            elif isinstance(outcome, BaseException):
                raise outcome
        finally:
            owner.running -= 1
        return CollectionResult(
            repository_id=self._repository.id,
            commit_count=2,
            pull_request_count=1,
            review_count=1,
            strategy="fake",
        )


class CountingRepositoryService(RepositoryService):
    def __init__(self) -> None:
        super().__init__(RepositoryDAO())
        self.resets: list[int] = []

    async def reset_watermark(self, session, repository_id):
        self.resets.append(repository_id)
        await super().reset_watermark(session, repository_id)


def _orchestrator(session_factory, collectors, **kwargs) -> SyncOrchestrator:
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("task_timeout", 5)
    return SyncOrchestrator(session_factory, collector_factory=collectors, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [1, 3])
async def test_one_failing_repository_is_isolated(session_factory, make_repository, concurrency):
    repos = [await make_repository(f"acme/r{i}") for i in range(5)]
    collectors = FakeCollectors({"acme/r2": RuntimeError("always broken")})
    orchestrator = _orchestrator(session_factory, collectors)

    results = await orchestrator.sync_all(concurrency=concurrency)

    assert [r.repository_id for r in results] == [r.id for r in repos]
    assert [r.success for r in results] == [True, True, False, True, True]
    assert "always broken" in results[2].message

    progress = orchestrator.progress
    assert (progress.total, progress.completed, progress.failed) == (5, 4, 1)
    assert progress.status == "failed"
    # first attempt plus two retries
    assert collectors.calls["acme/r2"] == 3


@pytest.mark.asyncio
async def test_all_succeed(session_factory, make_repository):
    await make_repository("acme/a")
    await make_repository("acme/b")
    orchestrator = _orchestrator(session_factory, FakeCollectors())

    results = await orchestrator.sync_all()

    assert all(r.success for r in results)
    assert results[0].commit_count == 2
    assert results[0].strategy == "fake"
    assert "2 commits" in results[0].message
    assert orchestrator.progress.status == "completed"


@pytest.mark.asyncio
async def test_sequential_runs_one_at_a_time(session_factory, make_repository):
    for i in range(4):
        await make_repository(f"acme/r{i}")
    collectors = FakeCollectors(delay=0.01)

    await _orchestrator(session_factory, collectors).sync_all(concurrency=1)

    assert collectors.peak == 1


@pytest.mark.asyncio
async def test_batched_concurrency_is_bounded(session_factory, make_repository):
    for i in range(5):
        await make_repository(f"acme/r{i}")
    collectors = FakeCollectors(delay=0.02)

    results = await _orchestrator(session_factory, collectors).sync_all(concurrency=2)

    assert len(results) == 5
    assert collectors.peak == 2


@pytest.mark.asyncio
async def test_nothing_registered(session_factory):
    with pytest.raises(NoRepositoriesError):
        await _orchestrator(session_factory, FakeCollectors()).sync_all()


@pytest.mark.asyncio
async def test_tenant_scope(session_factory, make_repository):
    await make_repository("acme/mine", tenant_id=1)
    await make_repository("other/theirs", tenant_id=2)
    collectors = FakeCollectors()
    orchestrator = _orchestrator(session_factory, collectors)

    results = await orchestrator.sync_all(tenant_id=1)

    assert [r.repository_name for r in results] == ["acme/mine"]
    with pytest.raises(NoRepositoriesError):
        await orchestrator.sync_all(tenant_id=3)


@pytest.mark.asyncio
async def test_force_full_resets_watermark_once(session_factory, make_repository):
    repo = await make_repository(last_sync_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    seen_watermarks = []

    async def record_watermark(factory, repository):
        async with factory() as s:
            seen_watermarks.append((await s.get(Repository, repository.id)).last_sync_at)

    collectors = FakeCollectors(
        {repo.full_name: [TransientRemoteError("blip"), None]}, on_enter=record_watermark
    )
    service = CountingRepositoryService()
    orchestrator = _orchestrator(session_factory, collectors, repository_service=service)

    result = await orchestrator.sync_one(repo.id, force_full=True)

    assert result.success
    assert seen_watermarks[0] == EPOCH
    # the retry did not reset again
    assert service.resets == [repo.id]


@pytest.mark.asyncio
async def test_permanent_error_not_retried(session_factory, make_repository):
    repo = await make_repository()
    collectors = FakeCollectors({repo.full_name: PermanentRemoteError("gone", status_code=404)})

    result = await _orchestrator(session_factory, collectors, max_retries=5).sync_one(repo.id)

    assert not result.success
    assert collectors.calls[repo.full_name] == 1


@pytest.mark.asyncio
async def test_missing_repository_reports_failure(session_factory):
    result = await _orchestrator(session_factory, FakeCollectors()).sync_one(999)
    assert not result.success
    assert result.repository_name == "repository 999"
    assert "not found" in result.message


@pytest.mark.asyncio
async def test_timeout_reported(session_factory, make_repository):
    repo = await make_repository()
    collectors = FakeCollectors(delay=2)

    result = await _orchestrator(session_factory, collectors, task_timeout=0.05).sync_one(repo.id)

    assert not result.success
    assert "timed out" in result.message
    assert collectors.calls[repo.full_name] == 1


@pytest.mark.asyncio
async def test_repository_in_flight_is_skipped(session_factory, make_repository):
    repo = await make_repository()
    release = asyncio.Event()
    collectors = FakeCollectors({repo.full_name: release})
    orchestrator = _orchestrator(session_factory, collectors)

    first = asyncio.create_task(orchestrator.sync_one(repo.id))
    while collectors.running == 0:
        await asyncio.sleep(0.005)

    second = await orchestrator.sync_one(repo.id)
    release.set()
    first_result = await first

    assert second.skipped
    assert not second.success
    assert first_result.success
    assert collectors.calls[repo.full_name] == 1


@pytest.mark.asyncio
async def test_list_repositories_without_data(session_factory, make_repository):
    await make_repository("acme/empty")
    orchestrator = _orchestrator(session_factory, FakeCollectors())

    empty = await orchestrator.list_repositories_without_data()

    assert [r.full_name for r in empty] == ["acme/empty"]


def test_result_to_dict():
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    data = SyncResult(
        repository_id=1,
        repository_name="acme/a",
        success=True,
        message="ok",
        start_time=now,
        end_time=now,
    ).to_dict()
    assert data["start_time"] == "2024-03-01T00:00:00+00:00"
    assert data["errors"] == []
