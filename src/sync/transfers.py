"""
Transfer task records and batch progress accounting.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from mapping import MappingRecord


class TransferStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferType(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"


@dataclass
class TransferTask:
    """Observable record of one transfer. Not persisted."""

    id: str
    file_name: str
    local_path: str
    remote_path: str
    file_size: int
    type: TransferType
    status: TransferStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def for_record(cls, record: MappingRecord, transfer_type: TransferType) -> "TransferTask":
        return cls(
            id=record.media_id,
            file_name=record.file_name,
            local_path=record.local_path,
            remote_path=record.cloud_path,
            file_size=record.file_size,
            type=transfer_type,
            status=TransferStatus.PENDING,
            start_time=datetime.now(),
        )

    @property
    def duration(self) -> timedelta:
        return (self.end_time or datetime.now()) - self.start_time

    @property
    def is_finished(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.FAILED)


class TransferTaskList:
    """Thread-safe list of transfer tasks shared with observers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: list[TransferTask] = []

    def add(self, task: TransferTask) -> TransferTask:
        with self._lock:
            self._tasks.append(task)
        return task

    def mark_in_progress(self, task: TransferTask) -> None:
        with self._lock:
            task.status = TransferStatus.IN_PROGRESS
            task.start_time = datetime.now()

    def mark_completed(self, task: TransferTask) -> None:
        with self._lock:
            task.status = TransferStatus.COMPLETED
            task.end_time = datetime.now()

    def mark_failed(self, task: TransferTask, message: str) -> None:
        with self._lock:
            task.status = TransferStatus.FAILED
            task.error_message = message
            task.end_time = datetime.now()

    def snapshot(self) -> list[TransferTask]:
        with self._lock:
            return [replace(task) for task in self._tasks]

    def active(self) -> list[TransferTask]:
        return [task for task in self.snapshot() if task.status is TransferStatus.IN_PROGRESS]

    def pending(self) -> list[TransferTask]:
        return [task for task in self.snapshot() if task.status is TransferStatus.PENDING]

    def completed(self, limit: int = 50) -> list[TransferTask]:
        """Finished tasks, most recent first."""
        finished = [task for task in self.snapshot() if task.is_finished]
        finished.sort(key=lambda task: task.end_time or task.start_time, reverse=True)
        return finished[:limit]

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()


class ProgressTracker:
    """Accumulate finished work and map it onto a ``[start, end]`` percent range.

    Weighted by bytes; a batch of only empty files is weighted by item count.
    The reported value never decreases.
    """

    def __init__(
        self,
        start: int,
        end: int,
        total_bytes: int,
        total_items: int,
        callback: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.start = start
        self.end = end
        self.total_bytes = total_bytes
        self.total_items = total_items
        self.callback = callback
        self._lock = threading.Lock()
        self._done_bytes = 0
        self._done_items = 0
        self._percent = start

    @property
    def percent(self) -> int:
        with self._lock:
            return self._percent

    def advance(self, file_size: int) -> int:
        with self._lock:
            self._done_bytes += max(file_size, 0)
            self._done_items += 1
            if self.total_bytes > 0:
                fraction = self._done_bytes / self.total_bytes
            elif self.total_items > 0:
                fraction = self._done_items / self.total_items
            else:
                fraction = 1.0
            value = self.start + round(min(fraction, 1.0) * (self.end - self.start))
            self._percent = max(self._percent, value)
            # Report under the lock so observers see values in order.
            if self.callback is not None:
                self.callback(self._percent)
            return self._percent
