"""
Sync pass state machine: one exclusive pass at a time, phases in fixed order.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from config import SyncSettings
from discovery import MediaIndex, ScanGaps
from mapping import CloudMappingTable, DeviceRegistry, MappingStore, SyncStatus
from sync import paths
from sync.events import SyncEvent, SyncEventBus, SyncEventKind
from sync.reconciler import MappingReconciler
from sync.scheduler import BatchResult, TransferScheduler, ensure_remote_directory
from sync.transfers import TransferTask, TransferTaskList
from transport import Transport


class SyncPhase(str, Enum):
    PREPARING = "preparing"
    UPLOAD_LOCAL_MAPPING = "uploadLocalMapping"
    DOWNLOAD_MERGE_REMOTE_MAPPINGS = "downloadMergeRemoteMappings"
    ENSURE_CLOUD_DIRECTORIES = "ensureCloudDirectories"
    DELETE_MARKED_FILES = "deleteMarkedFiles"
    UPLOAD_PENDING_FILES = "uploadPendingFiles"
    DOWNLOAD_PENDING_FILES = "downloadPendingFiles"
    PERSIST_FINAL_MAPPING = "persistFinalMapping"
    COMPLETED = "completed"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    ERROR = "error"


class SyncCancelled(Exception):
    """Raised between phases once cancellation has been requested."""


class SyncRejected(RuntimeError):
    """A pass could not start or continue because a precondition failed."""


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    phase: SyncPhase
    message: str = ""
    batches: tuple[BatchResult, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS


@dataclass(frozen=True)
class PhaseStep:
    phase: SyncPhase
    status_text: str
    progress: int
    action: Callable[[CloudMappingTable], None]


class SyncOrchestrator:
    """Run sync passes over the local mapping table.

    Only one pass runs per instance; a second request while a pass is active
    is rejected, not queued. Cancellation is cooperative and checked before
    each phase, so transfers already dispatched in a phase run to completion.
    Mapping mutations already persisted are kept when a pass stops early.
    """

    def __init__(
        self,
        transport: Transport,
        store: MappingStore,
        device_registry: DeviceRegistry,
        reconciler: MappingReconciler,
        settings: SyncSettings,
        logger: Optional[logging.Logger] = None,
        transfer_logger: Optional[logging.Logger] = None,
        events: Optional[SyncEventBus] = None,
    ) -> None:
        self.transport = transport
        self.store = store
        self.device_registry = device_registry
        self.reconciler = reconciler
        self.settings = settings
        self.logger = logger or logging.getLogger("media_sync")
        self.events = events or SyncEventBus(self.logger)
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._state_lock = threading.Lock()
        self._phase = SyncPhase.PREPARING
        self._progress = 0
        self._status_text = "Idle"
        self._last_error: Optional[str] = None
        self._table: Optional[CloudMappingTable] = None
        self._tasks = TransferTaskList()
        self._batches: list[BatchResult] = []
        self.scheduler = TransferScheduler(
            transport,
            max_concurrent=settings.max_concurrent_transfers,
            logger=self.logger,
            transfer_logger=transfer_logger,
            tasks=self._tasks,
            on_tasks_changed=self._publish_tasks,
            on_progress=self._set_progress,
            on_status=self._set_status,
        )

    # Observers

    @property
    def current_phase(self) -> SyncPhase:
        with self._state_lock:
            return self._phase

    @property
    def progress(self) -> int:
        with self._state_lock:
            return self._progress

    @property
    def status_text(self) -> str:
        with self._state_lock:
            return self._status_text

    @property
    def last_error(self) -> Optional[str]:
        with self._state_lock:
            return self._last_error

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def transfer_tasks(self) -> list[TransferTask]:
        return self._tasks.snapshot()

    @property
    def table(self) -> Optional[CloudMappingTable]:
        """Copy of the table as of the last completed phase."""
        with self._state_lock:
            return self._table.copy() if self._table is not None else None

    # Commands

    def cancel_sync(self) -> None:
        if self.is_syncing:
            self.logger.info("Cancellation requested")
            self._set_status("Cancelling...")
        self._cancel.set()

    def apply_scan(
        self, indices: Dict[str, MediaIndex], gaps: Optional[ScanGaps] = None
    ) -> CloudMappingTable:
        """Fold fresh scan results into the local table outside of a pass."""
        if not self._lock.acquire(blocking=False):
            raise SyncRejected("Sync already in progress")
        try:
            table = self._load_table()
            self.reconciler.update_local_mapping(table, indices, gaps=gaps)
            self._persist(table)
            return table.copy()
        finally:
            self._lock.release()

    def start_sync(
        self,
        indices: Optional[Dict[str, MediaIndex]] = None,
        gaps: Optional[ScanGaps] = None,
    ) -> SyncResult:
        """Run one full sync pass and report how it ended.

        ``indices`` are fresh scan results folded in during ``preparing``;
        ``gaps`` lists the locations that scan could not read.
        Exceptions raised inside the pass are reported in the result.
        """
        if not self._lock.acquire(blocking=False):
            self.logger.warning("Sync request rejected: a sync pass is already running")
            return SyncResult(SyncOutcome.ERROR, self.current_phase, "Sync already in progress")
        try:
            self._cancel.clear()
            self._tasks.clear()
            self._batches = []
            with self._state_lock:
                self._last_error = None
                self._progress = 0
            return self._run_pass(indices, gaps)
        finally:
            self._lock.release()

    def _run_pass(self, indices: Optional[Dict[str, MediaIndex]], gaps: Optional[ScanGaps]) -> SyncResult:
        if not self.transport.is_connected:
            return self._fail(SyncPhase.PREPARING, "Transport not connected")

        phase = SyncPhase.PREPARING
        started = datetime.now()
        self.logger.info("Sync pass started")
        try:
            self._check_cancelled()
            self._enter(SyncPhase.PREPARING, "Preparing sync...")
            table = self._prepare(indices, gaps)
            for step in self._steps():
                phase = step.phase
                self._check_cancelled()
                self._enter(step.phase, step.status_text)
                step.action(table)
                with self._state_lock:
                    self._table = table.copy()
                self._set_progress(step.progress)
            self.device_registry.update_last_sync()
        except SyncCancelled:
            self.logger.info("Sync pass cancelled before %s", phase.value)
            self._set_status("Sync cancelled")
            self._publish(SyncEventKind.FINISHED, "cancelled")
            return SyncResult(SyncOutcome.CANCELLED, phase, "Sync cancelled", tuple(self._batches))
        except Exception as exc:
            self.logger.exception("Sync pass failed during %s", phase.value)
            return self._fail(phase, str(exc) or exc.__class__.__name__)

        self._set_phase(SyncPhase.COMPLETED)
        self._set_status("Sync completed")
        self.logger.info("Sync pass completed in %.1fs", (datetime.now() - started).total_seconds())
        self._publish(SyncEventKind.FINISHED, "success")
        return SyncResult(SyncOutcome.SUCCESS, SyncPhase.COMPLETED, "", tuple(self._batches))

    def _steps(self) -> list[PhaseStep]:
        return [
            PhaseStep(
                SyncPhase.UPLOAD_LOCAL_MAPPING,
                "Uploading local mapping table...",
                10,
                self._upload_mapping,
            ),
            PhaseStep(
                SyncPhase.DOWNLOAD_MERGE_REMOTE_MAPPINGS,
                "Downloading and merging cloud mapping tables...",
                20,
                self._merge_remote,
            ),
            PhaseStep(
                SyncPhase.ENSURE_CLOUD_DIRECTORIES,
                "Creating cloud directory structure...",
                30,
                self._ensure_directories,
            ),
            PhaseStep(
                SyncPhase.DELETE_MARKED_FILES,
                "Deleting removed files from cloud...",
                40,
                lambda table: self._run_batch(table, SyncStatus.PENDING_DELETE, (30, 40)),
            ),
            PhaseStep(
                SyncPhase.UPLOAD_PENDING_FILES,
                "Uploading files...",
                70,
                lambda table: self._run_batch(table, SyncStatus.PENDING_UPLOAD, (40, 70)),
            ),
            PhaseStep(
                SyncPhase.DOWNLOAD_PENDING_FILES,
                "Downloading files...",
                95,
                lambda table: self._run_batch(table, SyncStatus.PENDING_DOWNLOAD, (70, 95)),
            ),
            PhaseStep(
                SyncPhase.PERSIST_FINAL_MAPPING,
                "Saving sync state...",
                100,
                self._persist_final,
            ),
        ]

    # Phases

    def _prepare(self, indices: Optional[Dict[str, MediaIndex]], gaps: Optional[ScanGaps]) -> CloudMappingTable:
        table = self._load_table()
        if self.store.last_load_recovered:
            raise SyncRejected(self.store.last_load_error or "Local mapping table was reset")
        changed = False
        if indices is not None:
            stats = self.reconciler.update_local_mapping(table, indices, gaps=gaps)
            changed = bool(stats.added or stats.marked_for_delete)
        if self.settings.retry_failed:
            changed = bool(self.reconciler.requeue_failed(table, gaps=gaps)) or changed
        if changed:
            self._persist(table)
        counts = table.status_counts()
        self.logger.info(
            "Mapping table: %s rows (%s)",
            len(table),
            ", ".join(f"{status.value}={count}" for status, count in counts.items() if count),
        )
        return table

    def _upload_mapping(self, table: CloudMappingTable) -> None:
        ensure_remote_directory(
            self.transport, paths.device_mapping_dir(self.settings.namespace, table.device_id)
        )
        target = paths.device_mapping_path(self.settings.namespace, table.device_id)
        if not self.transport.put(target, table.encode().encode("utf-8")):
            raise SyncRejected(f"Mapping table upload rejected for {target}")
        self.logger.info("Uploaded mapping table (%s rows) to %s", len(table), target)

    def _merge_remote(self, table: CloudMappingTable) -> None:
        stats = self.reconciler.download_and_merge(self.transport, table)
        self.logger.info(
            "Remote merge: %s devices seen, %s merged, %s skipped, %s new entries",
            stats.devices_seen,
            stats.devices_merged,
            stats.devices_failed,
            stats.added,
        )
        self._persist(table)

    def _ensure_directories(self, table: CloudMappingTable) -> None:
        # Date directories are created on demand by the uploads.
        namespace = self.settings.namespace
        for directory in (
            paths.namespace_root(namespace),
            paths.mappings_root(namespace),
            paths.device_mapping_dir(namespace, table.device_id),
        ):
            ensure_remote_directory(self.transport, directory)

    def _run_batch(self, table: CloudMappingTable, status: SyncStatus, progress_range: tuple[int, int]) -> None:
        self._set_progress(progress_range[0])
        result = self.scheduler.run(table, status, progress_range)
        self._batches.append(result)
        if result.total:
            self._persist(table)

    def _persist_final(self, table: CloudMappingTable) -> None:
        table.touch()
        self._persist(table)
        self._upload_mapping(table)

    # Helpers

    def _load_table(self) -> CloudMappingTable:
        device = self.device_registry.load_or_create(self.settings.device_name)
        if device.name != self.settings.device_name:
            device = self.device_registry.update_name(self.settings.device_name)
        table = self.store.load(device)
        with self._state_lock:
            self._table = table.copy()
        return table

    def _persist(self, table: CloudMappingTable) -> None:
        self.store.save(table)
        with self._state_lock:
            self._table = table.copy()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise SyncCancelled()

    def _fail(self, phase: SyncPhase, message: str) -> SyncResult:
        with self._state_lock:
            self._last_error = message
        self._set_status(f"Sync failed: {message}")
        self._publish(SyncEventKind.FINISHED, message)
        return SyncResult(SyncOutcome.ERROR, phase, message, tuple(self._batches))

    def _enter(self, phase: SyncPhase, status_text: str) -> None:
        self.logger.info("Sync phase: %s", phase.value)
        self._set_phase(phase)
        self._set_status(status_text)

    def _set_phase(self, phase: SyncPhase) -> None:
        with self._state_lock:
            self._phase = phase
        self._publish(SyncEventKind.PHASE, phase.value)

    def _set_progress(self, value: int) -> None:
        with self._state_lock:
            if value <= self._progress:
                return
            self._progress = value
        self._publish(SyncEventKind.PROGRESS)

    def _set_status(self, text: str) -> None:
        with self._state_lock:
            self._status_text = text
        self._publish(SyncEventKind.STATUS, text)

    def _publish_tasks(self) -> None:
        self._publish(SyncEventKind.TASKS, tasks=tuple(self._tasks.snapshot()))

    def _publish(self, kind: SyncEventKind, message: str = "", tasks: tuple[TransferTask, ...] = ()) -> None:
        with self._state_lock:
            phase = self._phase
            progress = self._progress
        self.events.publish(SyncEvent(kind=kind, phase=phase.value, progress=progress, message=message, tasks=tasks))
