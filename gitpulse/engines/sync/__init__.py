"""Sync engine — per-repository incremental ingestion with progress tracking."""

from gitpulse.engines.sync.models import SyncProgress, SyncResult
from gitpulse.engines.sync.orchestrator import SyncOrchestrator
from gitpulse.engines.sync.progress import SyncProgressTracker

__all__ = [
    "SyncOrchestrator",
    "SyncProgress",
    "SyncProgressTracker",
    "SyncResult",
]
