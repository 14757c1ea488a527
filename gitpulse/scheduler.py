"""Scheduler — periodic repository sync with a chained cache-maintenance loop."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from gitpulse.core.config import env_float, env_int
from gitpulse.engines.sync.orchestrator import SyncOrchestrator
from gitpulse.services import NoRepositoriesError
from gitpulse.services.metrics_service import MetricsCache

logger = structlog.get_logger(__name__)


class EngineLoop:
    """Single engine scheduling loop with trigger/timeout wake mechanism."""

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
        downstream: asyncio.Event | None = None,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = asyncio.Event()
        self.downstream = downstream

    async def loop(self) -> None:
        """Run the engine in an infinite loop, waking on trigger or timeout."""
        while True:
            try:
                await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
                self.trigger.clear()
            except asyncio.TimeoutError:
                pass

            try:
                processed = await self.run_fn()
                logger.info("engine.cycle", engine=self.name, processed=processed)
                if processed > 0 and self.downstream is not None:
                    self.downstream.set()
            except Exception:
                logger.exception("engine.error", engine=self.name)


class Scheduler:
    """Manages lifecycle of all EngineLoop tasks."""

    def __init__(self, loops: list[EngineLoop]) -> None:
        self._loops = loops
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def loops(self) -> list[EngineLoop]:
        return list(self._loops)

    async def start(self) -> None:
        """Start all engine loops as asyncio tasks."""
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        # Kick off the first engine immediately
        if self._loops:
            self._loops[0].trigger.set()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    async def stop(self) -> None:
        """Cancel all engine loops and wait for them to exit."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("scheduler.stopped")


def create_scheduler(
    orchestrator: SyncOrchestrator,
    *,
    metrics_cache: MetricsCache,
    tenant_id: int | None = None,
) -> Scheduler:
    """Build a Scheduler: sync loop first, cache purge chained after it.

    Intervals and concurrency come from ``GITPULSE_SYNC_INTERVAL``,
    ``GITPULSE_SYNC_CONCURRENCY`` and ``GITPULSE_METRICS_CACHE_TTL``.
    """
    sync_interval = env_float("GITPULSE_SYNC_INTERVAL", 3600)
    concurrency = env_int("GITPULSE_SYNC_CONCURRENCY", 1)
    purge_interval = env_float("GITPULSE_METRICS_CACHE_TTL", 300)

    trigger_purge = asyncio.Event()

    async def _sync_repositories() -> int:
        try:
            results = await orchestrator.sync_all(concurrency=concurrency, tenant_id=tenant_id)
        except NoRepositoriesError:
            logger.info("sync.nothing_to_do", tenant_id=tenant_id)
            return 0
        return sum(
            r.commit_count + r.pull_request_count + r.review_count for r in results if r.success
        )

    async def _purge_cache() -> int:
        return metrics_cache.purge_expired()

    purge_loop = EngineLoop("metrics_cache", _purge_cache, purge_interval)
    purge_loop.trigger = trigger_purge

    sync_loop = EngineLoop("sync", _sync_repositories, sync_interval, downstream=trigger_purge)

    return Scheduler([sync_loop, purge_loop])
