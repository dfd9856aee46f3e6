import threading
from datetime import datetime
from pathlib import Path

import pytest

from conftest import FakeTransport, make_record
from mapping import CloudMappingTable, SyncStatus
from sync import (
    ProgressTracker,
    TransferScheduler,
    TransferStatus,
    TransferTaskList,
    TransferType,
    ensure_remote_directory,
)
from transport import TransportError


def _table(*rows) -> CloudMappingTable:
    return CloudMappingTable(
        device_id="device-1",
        device_name="Laptop",
        last_updated=datetime(2024, 6, 1),
        mappings=list(rows),
    )


def _local_file(tmp_path: Path, name: str, content: bytes = b"media") -> Path:
    path = tmp_path / "photos" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def test_upload_skips_when_remote_exists(tmp_path: Path, transport: FakeTransport) -> None:
    path = _local_file(tmp_path, "a.jpg")
    transport.add_file("/EchoPixel/2024/05/01/a.jpg", b"already there")
    table = _table(make_record("a", str(path), SyncStatus.PENDING_UPLOAD))

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_UPLOAD)

    assert result.skipped == 1
    assert table.find("a").sync_status is SyncStatus.SYNCED
    assert transport.methods_for("put") == []


def test_upload_creates_missing_parent_and_retries_once(tmp_path: Path, transport: FakeTransport) -> None:
    path = _local_file(tmp_path, "a.jpg", b"fresh")
    table = _table(make_record("a", str(path), SyncStatus.PENDING_UPLOAD))

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_UPLOAD)

    assert result.succeeded == 1
    assert transport.methods_for("put") == ["/EchoPixel/2024/05/01/a.jpg"] * 2
    assert "/EchoPixel/2024/05/01" in transport.methods_for("mkdir_recursive")
    assert transport.files["/EchoPixel/2024/05/01/a.jpg"] == b"fresh"
    assert table.find("a").sync_status is SyncStatus.SYNCED


def test_upload_of_missing_local_file_is_an_error(tmp_path: Path, transport: FakeTransport) -> None:
    table = _table(make_record("a", str(tmp_path / "vanished.jpg"), SyncStatus.PENDING_UPLOAD))
    tasks = TransferTaskList()

    result = TransferScheduler(transport, tasks=tasks).run(table, SyncStatus.PENDING_UPLOAD)

    assert result.failed == 1
    assert table.find("a").sync_status is SyncStatus.ERROR
    assert tasks.snapshot()[0].status is TransferStatus.FAILED
    assert transport.methods_for("put") == []


def test_failures_are_isolated(tmp_path: Path, transport: FakeTransport) -> None:
    transport.mkdir_recursive("/EchoPixel/2024/05/01")
    rows = [make_record(str(n), str(_local_file(tmp_path, f"{n}.jpg")), SyncStatus.PENDING_UPLOAD) for n in range(4)]
    transport.fail_on("put", rows[1].cloud_path)
    table = _table(*rows)

    result = TransferScheduler(transport, max_concurrent=2).run(table, SyncStatus.PENDING_UPLOAD)

    assert result.succeeded == 3
    assert result.failed == 1
    assert table.find("1").sync_status is SyncStatus.ERROR
    assert transport.methods_for("put").count(rows[1].cloud_path) == 1
    assert all(table.find(str(n)).sync_status is SyncStatus.SYNCED for n in (0, 2, 3))


def test_concurrency_is_bounded(tmp_path: Path) -> None:
    transport = FakeTransport(put_delay=0.05)
    transport.mkdir_recursive("/EchoPixel/2024/05/01")
    rows = [make_record(str(n), str(_local_file(tmp_path, f"{n}.jpg")), SyncStatus.PENDING_UPLOAD) for n in range(10)]
    table = _table(*rows)
    tasks = TransferTaskList()
    in_progress_seen: list[int] = []
    lock = threading.Lock()

    def observe() -> None:
        with lock:
            in_progress_seen.append(len(tasks.active()))

    TransferScheduler(transport, max_concurrent=3, tasks=tasks, on_tasks_changed=observe).run(
        table, SyncStatus.PENDING_UPLOAD
    )

    assert transport.max_in_flight <= 3
    assert max(in_progress_seen) <= 3
    assert len(transport.files) == 10


def test_download_writes_local_file(tmp_path: Path, transport: FakeTransport) -> None:
    target = tmp_path / "media" / "2024" / "05" / "01" / "b.jpg"
    row = make_record("b", str(target), SyncStatus.PENDING_DOWNLOAD)
    transport.add_file(row.cloud_path, b"remote bytes")
    table = _table(row)

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_DOWNLOAD)

    assert result.succeeded == 1
    assert target.read_bytes() == b"remote bytes"
    assert table.find("b").sync_status is SyncStatus.SYNCED


def test_download_failure_marks_error(tmp_path: Path, transport: FakeTransport) -> None:
    row = make_record("b", str(tmp_path / "media" / "b.jpg"), SyncStatus.PENDING_DOWNLOAD)
    table = _table(row)

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_DOWNLOAD)

    assert result.failed == 1
    assert table.find("b").sync_status is SyncStatus.ERROR
    assert not (tmp_path / "media" / "b.jpg").exists()


def test_delete_removes_row_when_remote_absent(transport: FakeTransport) -> None:
    table = _table(make_record("c", "/photos/c.jpg", SyncStatus.PENDING_DELETE))

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_DELETE)

    assert result.removed == 1
    assert "c" not in table
    assert transport.methods_for("delete") == []


def test_delete_removes_remote_and_row(transport: FakeTransport) -> None:
    row = make_record("c", "/photos/c.jpg", SyncStatus.PENDING_DELETE)
    transport.add_file(row.cloud_path, b"old")
    table = _table(row)

    TransferScheduler(transport).run(table, SyncStatus.PENDING_DELETE)

    assert row.cloud_path not in transport.files
    assert "c" not in table


def test_delete_failure_keeps_row_as_error(transport: FakeTransport) -> None:
    row = make_record("c", "/photos/c.jpg", SyncStatus.PENDING_DELETE)
    transport.add_file(row.cloud_path, b"old")
    transport.fail_on("delete", row.cloud_path)
    table = _table(row)

    result = TransferScheduler(transport).run(table, SyncStatus.PENDING_DELETE)

    assert result.failed == 1
    assert table.find("c").sync_status is SyncStatus.ERROR


def test_task_list_records_type_and_completion(tmp_path: Path, transport: FakeTransport) -> None:
    row = make_record("c", "/photos/c.jpg", SyncStatus.PENDING_DELETE)
    tasks = TransferTaskList()

    TransferScheduler(transport, tasks=tasks).run(_table(row), SyncStatus.PENDING_DELETE)

    (task,) = tasks.completed()
    assert task.type is TransferType.DELETE
    assert task.status is TransferStatus.COMPLETED
    assert task.end_time is not None


def test_progress_is_monotonic_and_bounded() -> None:
    reported: list[int] = []
    tracker = ProgressTracker(40, 70, total_bytes=300, total_items=3, callback=reported.append)

    for size in (100, 100, 100):
        tracker.advance(size)

    assert reported == sorted(reported)
    assert reported[-1] == 70
    assert all(40 <= value <= 70 for value in reported)


def test_progress_counts_items_when_files_are_empty() -> None:
    tracker = ProgressTracker(0, 10, total_bytes=0, total_items=2)

    assert tracker.advance(0) == 5
    assert tracker.advance(0) == 10


def test_ensure_remote_directory(transport: FakeTransport) -> None:
    ensure_remote_directory(transport, "/EchoPixel/.mappings/device-1")

    assert "/EchoPixel/.mappings/device-1" in transport.dirs


def test_ensure_remote_directory_raises_when_creation_fails(transport: FakeTransport) -> None:
    transport.mkdir_recursive = lambda path: False

    with pytest.raises(TransportError):
        ensure_remote_directory(transport, "/EchoPixel/2024")


def test_invalid_concurrency_rejected(transport: FakeTransport) -> None:
    with pytest.raises(ValueError):
        TransferScheduler(transport, max_concurrent=0)


def test_missing_upload_passes_through_in_progress(tmp_path: Path, transport: FakeTransport) -> None:
    table = _table(make_record("a", str(tmp_path / "vanished.jpg"), SyncStatus.PENDING_UPLOAD))
    tasks = TransferTaskList()
    seen: list[TransferStatus] = []

    TransferScheduler(transport, tasks=tasks, on_tasks_changed=lambda: seen.append(tasks.snapshot()[0].status)).run(
        table, SyncStatus.PENDING_UPLOAD
    )

    assert seen == [TransferStatus.PENDING, TransferStatus.IN_PROGRESS, TransferStatus.FAILED]
