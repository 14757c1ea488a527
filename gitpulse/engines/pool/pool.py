"""TaskPool — bounded async executor with per-task retry and timeout."""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from gitpulse.engines.collector.errors import PermanentRemoteError
from gitpulse.engines.pool.models import Task, TaskResult

log = structlog.get_logger("gitpulse.engine")

Handler = Callable[[Task], Awaitable[Any]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_TASK_TIMEOUT = 300.0  # seconds
_MAX_RATE_LIMIT_WAIT = 60.0


def default_max_workers() -> int:
    """``cpu_count - 1`` clamped to [2, 4]."""
    return max(2, min((os.cpu_count() or 1) - 1, 4))


class TaskPool:
    """Run submitted tasks with at most ``max_workers`` in flight.

    Pending tasks are dispatched highest ``priority`` first, ties in
    submission order.  A failing task is retried ``max_retries`` times with
    ``retry_delay`` between attempts; exceptions listed in ``no_retry`` and
    timeouts fail at once.  ``run_all`` returns one :class:`TaskResult` per
    submitted task, in submission order.
    """

    def __init__(
        self,
        max_workers: int | None = None,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        task_timeout: float | None = DEFAULT_TASK_TIMEOUT,
        no_retry: tuple[type[BaseException], ...] = (PermanentRemoteError,),
        on_result: Callable[[TaskResult], None] | None = None,
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers or default_max_workers()
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.task_timeout = task_timeout
        self.no_retry = no_retry
        self.on_result = on_result

        self._handlers: dict[str, Handler] = {}
        self._pending: list[Task] = []
        self._active = 0
        self._seq = itertools.count()

    # ── registration / submission ─────────────────────────────────────────

    def register(self, task_type: str, handler: Handler) -> None:
        self._handlers[task_type] = handler

    def submit(self, task: Task) -> None:
        self._pending.append(task)

    def submit_many(self, tasks: list[Task]) -> None:
        self._pending.extend(tasks)

    def clear(self) -> None:
        """Drop tasks that have not started yet."""
        self._pending.clear()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── execution ─────────────────────────────────────────────────────────

    async def run_all(self) -> list[TaskResult]:
        """Execute every pending task and wait for all of them."""
        tasks, self._pending = self._pending, []
        if not tasks:
            return []

        queue: asyncio.PriorityQueue[tuple[int, int, int]] = asyncio.PriorityQueue()
        for index, task in enumerate(tasks):
            queue.put_nowait((-task.priority, next(self._seq), index))

        results: list[TaskResult | None] = [None] * len(tasks)

        async def _worker() -> None:
            while True:
                try:
                    _, _, index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                self._active += 1
                try:
                    result = await self._execute(tasks[index])
                finally:
                    self._active -= 1
                results[index] = result
                if self.on_result is not None:
                    self.on_result(result)

        workers = min(self.max_workers, len(tasks))
        await asyncio.gather(*(_worker() for _ in range(workers)))
        return [r for r in results if r is not None]

    async def _execute(self, task: Task) -> TaskResult:
        start = datetime.now(timezone.utc)
        handler = self._handlers.get(task.type)
        if handler is None:
            return TaskResult(
                task_id=task.id,
                success=False,
                start_time=start,
                end_time=datetime.now(timezone.utc),
                error=f"no handler registered for task type {task.type!r}",
            )

        attempts = 0
        while True:
            attempts += 1
            try:
                if self.task_timeout is not None:
                    value = await asyncio.wait_for(handler(task), timeout=self.task_timeout)
                else:
                    value = await handler(task)
            except asyncio.TimeoutError as exc:
                log.warning(
                    "pool.task_timeout",
                    task_id=task.id,
                    task_type=task.type,
                    timeout=self.task_timeout,
                )
                return TaskResult(
                    task_id=task.id,
                    success=False,
                    start_time=start,
                    end_time=datetime.now(timezone.utc),
                    error=f"timed out after {self.task_timeout}s",
                    exception=exc,
                    attempts=attempts,
                    timed_out=True,
                )
            except Exception as exc:
                retryable = not isinstance(exc, self.no_retry)
                if not retryable or attempts > self.max_retries:
                    log.error(
                        "pool.task_failed",
                        task_id=task.id,
                        task_type=task.type,
                        attempts=attempts,
                        error=str(exc),
                    )
                    return TaskResult(
                        task_id=task.id,
                        success=False,
                        start_time=start,
                        end_time=datetime.now(timezone.utc),
                        error=str(exc) or type(exc).__name__,
                        exception=exc,
                        attempts=attempts,
                    )
                delay = self._retry_wait(exc)
                log.warning(
                    "pool.task_retry",
                    task_id=task.id,
                    task_type=task.type,
                    attempt=attempts,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(exc),
                )
                await asyncio.sleep(delay)
                continue

            return TaskResult(
                task_id=task.id,
                success=True,
                start_time=start,
                end_time=datetime.now(timezone.utc),
                result=value,
                attempts=attempts,
            )

    def _retry_wait(self, exc: Exception) -> float:
        """Fixed delay, stretched to a rate limit's ``retry_after`` (capped)."""
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after > self.retry_delay:
            return min(float(retry_after), _MAX_RATE_LIMIT_WAIT)
        return self.retry_delay
