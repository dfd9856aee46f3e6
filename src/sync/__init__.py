"""
Sync engine: reconciliation, transfer scheduling and the sync pass state machine.
"""

from .events import SyncEvent, SyncEventBus, SyncEventKind
from .orchestrator import (
    SyncCancelled,
    SyncOrchestrator,
    SyncOutcome,
    SyncPhase,
    SyncRejected,
    SyncResult,
)
from .reconciler import LocalUpdateStats, MappingReconciler, MergeStats
from .scheduler import BatchResult, TransferScheduler, ensure_remote_directory
from .service import MediaSyncService
from .transfers import (
    ProgressTracker,
    TransferStatus,
    TransferTask,
    TransferTaskList,
    TransferType,
)

__all__ = [
    "BatchResult",
    "LocalUpdateStats",
    "MappingReconciler",
    "MediaSyncService",
    "MergeStats",
    "ProgressTracker",
    "SyncCancelled",
    "SyncEvent",
    "SyncEventBus",
    "SyncEventKind",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncPhase",
    "SyncRejected",
    "SyncResult",
    "TransferScheduler",
    "TransferStatus",
    "TransferTask",
    "TransferTaskList",
    "TransferType",
    "ensure_remote_directory",
]
