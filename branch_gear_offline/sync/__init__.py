"""
Synchronization: queue draining, id reconciliation, pulls and scheduling.
"""

from .coordinator import SyncCoordinator, sync_notice
from .engine import MAX_RETRIES, DrainGuard, SyncConfig, SyncEngine, SyncResult, SyncState
from .ordering import sort_key, sort_queue
from .pull import PullReport, PullService
from .reconcile import IdReconciler

__all__ = [
    "SyncCoordinator",
    "sync_notice",
    "MAX_RETRIES",
    "DrainGuard",
    "SyncConfig",
    "SyncEngine",
    "SyncResult",
    "SyncState",
    "sort_key",
    "sort_queue",
    "PullReport",
    "PullService",
    "IdReconciler",
]
