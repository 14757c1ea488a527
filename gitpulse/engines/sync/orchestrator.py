"""SyncOrchestrator — drives repository collectors with bounded concurrency."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitpulse.core.config import env_float, env_int
from gitpulse.dao.repository_dao import RepositoryDAO
from gitpulse.engines.collector.collector import open_collector
from gitpulse.engines.collector.errors import PermanentRemoteError
from gitpulse.engines.collector.models import CollectionResult
from gitpulse.engines.pool import Task, TaskPool, TaskResult
from gitpulse.engines.sync.models import SyncProgress, SyncResult
from gitpulse.engines.sync.progress import SyncProgressTracker
from gitpulse.models.repository import Repository
from gitpulse.services import NoRepositoriesError, NotFoundError, ValidationError
from gitpulse.services.repository_service import RepositoryService

log = structlog.get_logger("gitpulse.engine")

SYNC_TASK = "sync_repository"

# Errors that fail a repository immediately instead of being retried.
_NO_RETRY = (PermanentRemoteError, NotFoundError, ValidationError)


class Collector(Protocol):
    async def sync_all(self) -> CollectionResult: ...


CollectorFactory = Callable[
    [async_sessionmaker[AsyncSession], Repository],
    AbstractAsyncContextManager[Collector],
]


class SyncOrchestrator:
    """Sync one or all repositories, isolating each repository's failure.

    Every repository runs as a task in a :class:`TaskPool`; sequential mode
    is simply a batch size of one.  A repository is never submitted twice
    while it is still in flight on this orchestrator.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository_service: RepositoryService | None = None,
        collector_factory: CollectorFactory | None = None,
        *,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        task_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._repository_service = repository_service or RepositoryService(RepositoryDAO())
        self._collector_factory = collector_factory or open_collector
        self.max_retries = (
            max_retries if max_retries is not None else env_int("GITPULSE_POOL_MAX_RETRIES", 3)
        )
        self.retry_delay = (
            retry_delay if retry_delay is not None else env_float("GITPULSE_POOL_RETRY_DELAY", 1.0)
        )
        self.task_timeout = (
            task_timeout
            if task_timeout is not None
            else env_float("GITPULSE_POOL_TASK_TIMEOUT", 300.0)
        )
        self._tracker = SyncProgressTracker()
        self._in_flight: set[int] = set()

    @property
    def progress(self) -> SyncProgress:
        """Snapshot of the most recent run."""
        return self._tracker.snapshot()

    # ── public ────────────────────────────────────────────────────────────

    async def sync_one(self, repository_id: int, force_full: bool = False) -> SyncResult:
        """Sync a single repository; failures come back as a failed result."""
        tracker = self._new_tracker(total=1, batch_size=1)
        names = await self._names_for([repository_id])
        try:
            results = await self._run_batch([repository_id], force_full, names, tracker)
        finally:
            tracker.finish_batch()
            tracker.finalize()
        return results[0]

    async def sync_all(
        self,
        force_full: bool = False,
        concurrency: int = 1,
        tenant_id: int | None = None,
    ) -> list[SyncResult]:
        """Sync every repository (optionally of one tenant).

        ``concurrency <= 1`` runs strictly one after another; larger values
        run fixed-size batches and wait for each batch before the next.

        Raises :class:`NoRepositoriesError` when nothing is registered.
        """
        async with self._session_factory() as session:
            repositories = await self._repository_service.list(session, tenant_id=tenant_id)
        if not repositories:
            raise NoRepositoriesError(
                "no repositories to sync"
                + (f" for tenant {tenant_id}" if tenant_id is not None else "")
            )

        names = {repo.id: repo.full_name for repo in repositories}
        ids = list(dict.fromkeys(repo.id for repo in repositories))
        batch_size = max(1, concurrency)

        tracker = self._new_tracker(total=len(ids), batch_size=batch_size)
        log.info(
            "sync.run_started",
            repositories=len(ids),
            concurrency=batch_size,
            force_full=force_full,
            tenant_id=tenant_id,
        )

        results: list[SyncResult] = []
        try:
            for offset in range(0, len(ids), batch_size):
                batch = ids[offset : offset + batch_size]
                results.extend(await self._run_batch(batch, force_full, names, tracker))
                tracker.finish_batch()
        finally:
            tracker.finalize()

        progress = tracker.snapshot()
        log.info(
            "sync.run_complete",
            total=progress.total,
            completed=progress.completed,
            failed=progress.failed,
            skipped=progress.skipped,
            status=progress.status,
        )
        return results

    async def list_repositories_without_data(self) -> list[Repository]:
        """Repositories that have not produced any commits or pull requests yet."""
        async with self._session_factory() as session:
            return await self._repository_service.list_without_data(session)

    # ── batches ───────────────────────────────────────────────────────────

    def _new_tracker(self, total: int, batch_size: int) -> SyncProgressTracker:
        tracker = SyncProgressTracker()
        tracker.reset(total=total, batch_size=batch_size)
        self._tracker = tracker
        return tracker

    async def _names_for(self, repository_ids: list[int]) -> dict[int, str]:
        names: dict[int, str] = {}
        async with self._session_factory() as session:
            for repository_id in repository_ids:
                repository = await self._repository_service.get_by_id(session, repository_id)
                if repository is not None:
                    names[repository_id] = repository.full_name
        return names

    async def _run_batch(
        self,
        repository_ids: list[int],
        force_full: bool,
        names: dict[int, str],
        tracker: SyncProgressTracker,
    ) -> list[SyncResult]:
        results: dict[int, SyncResult] = {}
        runnable: list[int] = []

        for repository_id in repository_ids:
            if repository_id in self._in_flight:
                log.warning("sync.already_running", repository_id=repository_id)
                results[repository_id] = self._skipped_result(repository_id, names)
                tracker.skip_repository(repository_id)
                continue
            self._in_flight.add(repository_id)
            runnable.append(repository_id)

        if runnable:
            pool = TaskPool(
                max_workers=len(runnable),
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                task_timeout=self.task_timeout,
                no_retry=_NO_RETRY,
                on_result=lambda r: tracker.finish_repository(int(r.task_id), r.success),
            )

            async def _handle(task: Task) -> SyncResult:
                return await self._sync_repository(task, tracker)

            pool.register(SYNC_TASK, _handle)
            pool.submit_many(
                [
                    Task(
                        id=str(repository_id),
                        type=SYNC_TASK,
                        payload={
                            "repository_id": repository_id,
                            "name": names.get(repository_id),
                            "force_full": force_full,
                        },
                    )
                    for repository_id in runnable
                ]
            )
            try:
                task_results = await pool.run_all()
            finally:
                self._in_flight.difference_update(runnable)

            for task_result in task_results:
                repository_id = int(task_result.task_id)
                results[repository_id] = self._to_sync_result(task_result, names)

        return [results[repository_id] for repository_id in repository_ids]

    async def _sync_repository(self, task: Task, tracker: SyncProgressTracker) -> SyncResult:
        """Pool handler: one attempt at syncing one repository.

        Raises on failure so the pool can decide whether to retry.
        """
        payload: dict[str, Any] = task.payload
        repository_id: int = payload["repository_id"]
        tracker.start_repository(repository_id, payload.get("name"))
        start = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            async with session.begin():
                repository = await self._repository_service.get(session, repository_id)
                if payload["force_full"]:
                    await self._repository_service.reset_watermark(session, repository_id)
                    log.info("sync.watermark_reset", repository_id=repository_id)
        # A retry after a committed reset must not wipe progress again.
        payload["force_full"] = False

        async with self._collector_factory(self._session_factory, repository) as collector:
            collected = await collector.sync_all()

        message = (
            f"synced {collected.commit_count} commits, "
            f"{collected.pull_request_count} pull requests, "
            f"{collected.review_count} reviews"
        )
        if collected.skipped_items:
            message += f" ({collected.skipped_items} items skipped)"
        log.info("sync.repository_done", repository=repository.full_name, message=message)

        return SyncResult(
            repository_id=repository.id,
            repository_name=repository.full_name,
            success=True,
            message=message,
            start_time=start,
            end_time=datetime.now(timezone.utc),
            commit_count=collected.commit_count,
            pull_request_count=collected.pull_request_count,
            review_count=collected.review_count,
            errors=list(collected.errors),
            strategy=collected.strategy,
        )

    # ── result conversion ─────────────────────────────────────────────────

    @staticmethod
    def _to_sync_result(task_result: TaskResult, names: dict[int, str]) -> SyncResult:
        if task_result.success:
            return task_result.result

        repository_id = int(task_result.task_id)
        name = names.get(repository_id, f"repository {repository_id}")
        error = task_result.error or "unknown error"
        log.error(
            "sync.repository_failed",
            repository_id=repository_id,
            repository=name,
            attempts=task_result.attempts,
            timed_out=task_result.timed_out,
            error=error,
        )
        return SyncResult(
            repository_id=repository_id,
            repository_name=name,
            success=False,
            message=f"sync failed: {error}",
            start_time=task_result.start_time,
            end_time=task_result.end_time,
            errors=[error],
        )

    @staticmethod
    def _skipped_result(repository_id: int, names: dict[int, str]) -> SyncResult:
        now = datetime.now(timezone.utc)
        return SyncResult(
            repository_id=repository_id,
            repository_name=names.get(repository_id, f"repository {repository_id}"),
            success=False,
            message="sync already in progress",
            start_time=now,
            end_time=now,
            errors=["sync already in progress"],
            skipped=True,
        )
