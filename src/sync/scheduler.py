"""
Bounded-concurrency execution of uploads, downloads and deletions.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from mapping import CloudMappingTable, MappingRecord, SyncStatus
from sync import paths
from sync.transfers import ProgressTracker, TransferTask, TransferTaskList, TransferType
from transport import NotFoundError, Transport, TransportError
from utils.serialization import atomic_write_bytes

TRANSFER_TYPES = {
    SyncStatus.PENDING_UPLOAD: TransferType.UPLOAD,
    SyncStatus.PENDING_DOWNLOAD: TransferType.DOWNLOAD,
    SyncStatus.PENDING_DELETE: TransferType.DELETE,
}


@dataclass(frozen=True)
class ItemResult:
    """Terminal outcome of one transfer; ``record`` is None when the row goes away."""

    media_id: str
    record: Optional[MappingRecord]
    outcome: str


@dataclass
class BatchResult:
    status: SyncStatus
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    removed: int = 0


def ensure_remote_directory(transport: Transport, path: str) -> None:
    """Make sure a remote collection exists, creating missing ancestors."""
    if transport.exists(path):
        return
    if not transport.mkdir_recursive(path):
        raise TransportError(f"Unable to create remote directory {path}")


class TransferScheduler:
    """Run every row in a given pending status through the transport.

    At most ``max_concurrent`` operations are in flight. A failing item is set
    to ``error`` and never retried within the batch; the batch always runs to
    completion before results are applied to the table.
    """

    def __init__(
        self,
        transport: Transport,
        max_concurrent: int = 5,
        logger: Optional[logging.Logger] = None,
        transfer_logger: Optional[logging.Logger] = None,
        tasks: Optional[TransferTaskList] = None,
        on_tasks_changed: Optional[Callable[[], None]] = None,
        on_progress: Optional[Callable[[int], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.transport = transport
        self.max_concurrent = max_concurrent
        self.logger = logger or logging.getLogger("media_sync")
        self.transfer_logger = transfer_logger or logging.getLogger("media_sync.transfer")
        self.tasks = tasks if tasks is not None else TransferTaskList()
        self.on_tasks_changed = on_tasks_changed
        self.on_progress = on_progress
        self.on_status = on_status

    def run(
        self,
        table: CloudMappingTable,
        status: SyncStatus,
        progress_range: tuple[int, int] = (0, 100),
    ) -> BatchResult:
        if status not in TRANSFER_TYPES:
            raise ValueError(f"No transfer operation for status {status.value}")
        records = table.with_status(status)
        result = BatchResult(status=status, total=len(records))
        if not records:
            return result

        transfer_type = TRANSFER_TYPES[status]
        operation = {
            TransferType.UPLOAD: self.upload,
            TransferType.DOWNLOAD: self.download,
            TransferType.DELETE: self.delete,
        }[transfer_type]
        progress = ProgressTracker(
            start=progress_range[0],
            end=progress_range[1],
            total_bytes=sum(record.file_size for record in records),
            total_items=len(records),
            callback=self.on_progress,
        )
        queued = [(record, self.tasks.add(TransferTask.for_record(record, transfer_type))) for record in records]
        self._notify_tasks()
        self.logger.info("Starting %s batch of %s items", transfer_type.value, len(records))

        with ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix=transfer_type.value) as executor:
            futures = [
                executor.submit(self._run_item, operation, record, task, progress)
                for record, task in queued
            ]
            outcomes = [future.result() for future in futures]

        for item in outcomes:
            if item.record is None:
                table.remove(item.media_id)
                result.removed += 1
            else:
                table.upsert(item.record)
            if item.outcome == "failed":
                result.failed += 1
            elif item.outcome == "skipped":
                result.skipped += 1
            else:
                result.succeeded += 1
        if outcomes:
            table.touch()
        self.logger.info(
            "%s batch finished: %s ok, %s skipped, %s failed",
            transfer_type.value.capitalize(),
            result.succeeded,
            result.skipped,
            result.failed,
        )
        return result

    def _run_item(
        self,
        operation: Callable[[MappingRecord, TransferTask], ItemResult],
        record: MappingRecord,
        task: TransferTask,
        progress: ProgressTracker,
    ) -> ItemResult:
        try:
            item = operation(record, task)
        except Exception as exc:
            self.logger.warning("%s failed for %s: %s", task.type.value.capitalize(), record.cloud_path, exc)
            self.tasks.mark_failed(task, str(exc))
            self.transfer_logger.info("%s FAILED %s: %s", task.type.value.upper(), record.cloud_path, exc)
            item = ItemResult(record.media_id, record.with_status(SyncStatus.ERROR), "failed")
        else:
            if item.outcome == "failed":
                self.transfer_logger.info(
                    "%s FAILED %s: %s", task.type.value.upper(), record.cloud_path, task.error_message
                )
            else:
                self.tasks.mark_completed(task)
                self.transfer_logger.info(
                    "%s %s %s <-> %s",
                    task.type.value.upper(),
                    item.outcome.upper(),
                    record.local_path,
                    record.cloud_path,
                )
        self._notify_tasks()
        progress.advance(record.file_size)
        return item

    def upload(self, record: MappingRecord, task: TransferTask) -> ItemResult:
        local_path = Path(record.local_path)
        self.tasks.mark_in_progress(task)
        self._notify_tasks()
        if not local_path.is_file():
            self.logger.warning("Local file missing, cannot upload: %s", local_path)
            self.tasks.mark_failed(task, "Local file missing")
            return ItemResult(record.media_id, record.with_status(SyncStatus.ERROR), "failed")

        self._status(f"{record.file_name} -> {record.cloud_path}")
        try:
            if self.transport.exists(record.cloud_path):
                self.logger.info("Already in cloud, skipping upload: %s", record.cloud_path)
                return ItemResult(record.media_id, record.with_status(SyncStatus.SYNCED), "skipped")
        except TransportError as exc:
            self.logger.warning("Existence check failed for %s, uploading anyway: %s", record.cloud_path, exc)

        data = local_path.read_bytes()
        try:
            self._put(record.cloud_path, data)
        except NotFoundError:
            parent = paths.parent_path(record.cloud_path)
            self.logger.info("Remote directory missing, creating %s", parent)
            ensure_remote_directory(self.transport, parent)
            self._put(record.cloud_path, data)
        return ItemResult(record.media_id, record.with_status(SyncStatus.SYNCED), "uploaded")

    def download(self, record: MappingRecord, task: TransferTask) -> ItemResult:
        local_path = Path(record.local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self.tasks.mark_in_progress(task)
        self._notify_tasks()
        self._status(f"{record.cloud_path} -> {record.file_name}")
        data = self.transport.get(record.cloud_path)
        atomic_write_bytes(local_path, data)
        return ItemResult(record.media_id, record.with_status(SyncStatus.SYNCED), "downloaded")

    def delete(self, record: MappingRecord, task: TransferTask) -> ItemResult:
        self.tasks.mark_in_progress(task)
        self._notify_tasks()
        self._status(f"Deleting {record.cloud_path}")
        if not self.transport.exists(record.cloud_path):
            self.logger.info("Already absent from cloud: %s", record.cloud_path)
            return ItemResult(record.media_id, None, "skipped")
        try:
            deleted = self.transport.delete(record.cloud_path)
        except NotFoundError:
            deleted = True
        if not deleted:
            raise TransportError(f"Delete rejected for {record.cloud_path}")
        return ItemResult(record.media_id, None, "deleted")

    def _put(self, path: str, data: bytes) -> None:
        if not self.transport.put(path, data):
            raise TransportError(f"Upload rejected for {path}")

    def _notify_tasks(self) -> None:
        if self.on_tasks_changed is not None:
            self.on_tasks_changed()

    def _status(self, message: str) -> None:
        if self.on_status is not None:
            self.on_status(message)
