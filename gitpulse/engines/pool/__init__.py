"""Task pool — bounded concurrent execution of typed tasks."""

from gitpulse.engines.pool.models import Task, TaskResult
from gitpulse.engines.pool.pool import TaskPool, default_max_workers

__all__ = [
    "Task",
    "TaskPool",
    "TaskResult",
    "default_max_workers",
]
