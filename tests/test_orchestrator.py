import hashlib
import threading
from datetime import datetime
from pathlib import Path

import pytest

from conftest import FakeTransport, make_record
from config import AppConfig, SyncSettings
from discovery import MediaRecord, MediaScanner, MediaType, build_indices
from mapping import CloudMappingTable, DeviceRegistry, MappingStore, SyncStatus
from sync import (
    MappingReconciler,
    SyncEventKind,
    SyncOrchestrator,
    SyncOutcome,
    SyncPhase,
    SyncRejected,
)


def _orchestrator(settings: SyncSettings, transport: FakeTransport) -> SyncOrchestrator:
    return SyncOrchestrator(
        transport,
        MappingStore(settings.mapping_file),
        DeviceRegistry(settings.device_file),
        MappingReconciler(settings.namespace, settings.media_cache_dir),
        settings,
    )


def _seed_table(settings: SyncSettings, *rows) -> CloudMappingTable:
    device = DeviceRegistry(settings.device_file).load_or_create(settings.device_name)
    store = MappingStore(settings.mapping_file)
    table = store.load(device)
    for row in rows:
        table.upsert(row)
    store.save(table)
    return table


def _photo(tmp_path: Path, name: str, content: bytes) -> MediaRecord:
    path = tmp_path / "photos" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    created = datetime(2024, 5, 1, 9)
    return MediaRecord(
        id=hashlib.sha256(content).hexdigest(),
        original_path=str(path),
        name=path.stem,
        extension=path.suffix.lstrip("."),
        size=len(content),
        type=MediaType.IMAGE,
        created_at=created,
        modified_at=created,
    )


def test_full_pass_uploads_and_publishes_mapping(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    record = _photo(tmp_path, "A.jpg", b"image A")
    orchestrator = _orchestrator(settings, transport)
    phases: list[str] = []
    orchestrator.events.subscribe(lambda event: phases.append(event.phase) if event.kind is SyncEventKind.PHASE else None)

    result = orchestrator.start_sync(build_indices([record]))

    assert result.outcome is SyncOutcome.SUCCESS
    assert orchestrator.current_phase is SyncPhase.COMPLETED
    assert orchestrator.progress == 100
    assert transport.files["/EchoPixel/2024/05/01/A.jpg"] == b"image A"
    device = DeviceRegistry(settings.device_file).load_or_create(settings.device_name)
    published = CloudMappingTable.decode(transport.files[f"/EchoPixel/.mappings/{device.uuid}/mapping.json"])
    assert published.find(record.id).sync_status is SyncStatus.SYNCED
    assert device.last_sync_time is not None
    assert phases == [phase.value for phase in SyncPhase]


def test_deletes_complete_before_uploads(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    upload_path = tmp_path / "photos" / "new.jpg"
    upload_path.parent.mkdir(parents=True)
    upload_path.write_bytes(b"new")
    old = make_record("old", str(tmp_path / "photos" / "old.jpg"), SyncStatus.PENDING_DELETE)
    new = make_record("new", str(upload_path), SyncStatus.PENDING_UPLOAD)
    transport.add_file(old.cloud_path, b"old")
    _seed_table(settings, old, new)

    result = _orchestrator(settings, transport).start_sync()

    assert result.ok
    operations = [(method, path) for method, path in transport.calls if method in ("delete", "put")]
    media_ops = [op for op in operations if ".mappings" not in op[1]]
    assert media_ops[0] == ("delete", old.cloud_path)
    assert ("put", new.cloud_path) in media_ops
    assert media_ops.index(("delete", old.cloud_path)) < media_ops.index(("put", new.cloud_path))


def test_cancel_between_delete_and_upload(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    upload_path = tmp_path / "photos" / "new.jpg"
    upload_path.parent.mkdir(parents=True)
    upload_path.write_bytes(b"new")
    old = make_record("old", str(tmp_path / "photos" / "old.jpg"), SyncStatus.PENDING_DELETE)
    new = make_record("new", str(upload_path), SyncStatus.PENDING_UPLOAD)
    transport.add_file(old.cloud_path, b"old")
    _seed_table(settings, old, new)
    orchestrator = _orchestrator(settings, transport)

    def cancel_on_delete_phase(event) -> None:
        if event.kind is SyncEventKind.PHASE and event.phase == SyncPhase.DELETE_MARKED_FILES.value:
            orchestrator.cancel_sync()

    orchestrator.events.subscribe(cancel_on_delete_phase)

    result = orchestrator.start_sync()

    assert result.outcome is SyncOutcome.CANCELLED
    assert result.phase is SyncPhase.UPLOAD_PENDING_FILES
    assert old.cloud_path not in transport.files
    assert new.cloud_path not in transport.methods_for("put")
    persisted = MappingStore(settings.mapping_file).load(
        DeviceRegistry(settings.device_file).load_or_create(settings.device_name)
    )
    assert "old" not in persisted
    assert persisted.find("new").sync_status is SyncStatus.PENDING_UPLOAD
    assert orchestrator.last_error is None


def test_not_connected_is_an_error(settings: SyncSettings) -> None:
    transport = FakeTransport(connected=False)

    result = _orchestrator(settings, transport).start_sync()

    assert result.outcome is SyncOutcome.ERROR
    assert "not connected" in result.message
    assert transport.calls == []


def test_concurrent_pass_is_rejected(tmp_path: Path, settings: SyncSettings) -> None:
    transport = FakeTransport(put_delay=0.2)
    record = _photo(tmp_path, "A.jpg", b"slow upload")
    orchestrator = _orchestrator(settings, transport)
    uploading = threading.Event()
    orchestrator.events.subscribe(
        lambda event: uploading.set()
        if event.kind is SyncEventKind.PHASE and event.phase == SyncPhase.UPLOAD_PENDING_FILES.value
        else None
    )
    results = {}
    worker = threading.Thread(target=lambda: results.setdefault("first", orchestrator.start_sync(build_indices([record]))))
    worker.start()
    assert uploading.wait(timeout=5)

    second = orchestrator.start_sync()
    with pytest.raises(SyncRejected):
        orchestrator.apply_scan({})
    worker.join(timeout=10)

    assert second.outcome is SyncOutcome.ERROR
    assert "already in progress" in second.message
    assert results["first"].outcome is SyncOutcome.SUCCESS


def test_corrupt_local_table_fails_pass_then_recovers(settings: SyncSettings, transport: FakeTransport) -> None:
    settings.mapping_file.parent.mkdir(parents=True, exist_ok=True)
    settings.mapping_file.write_text("{ corrupted", encoding="utf-8")
    orchestrator = _orchestrator(settings, transport)

    first = orchestrator.start_sync()
    second = orchestrator.start_sync()

    assert first.outcome is SyncOutcome.ERROR
    assert first.phase is SyncPhase.PREPARING
    assert orchestrator.last_error is None
    assert second.outcome is SyncOutcome.SUCCESS


def test_transport_failure_in_phase_is_reported(settings: SyncSettings, transport: FakeTransport) -> None:
    orchestrator = _orchestrator(settings, transport)
    device = DeviceRegistry(settings.device_file).load_or_create(settings.device_name)
    transport.fail_on("put", f"/EchoPixel/.mappings/{device.uuid}/mapping.json")

    result = orchestrator.start_sync()

    assert result.outcome is SyncOutcome.ERROR
    assert result.phase is SyncPhase.UPLOAD_LOCAL_MAPPING
    assert orchestrator.last_error == result.message
    assert not orchestrator.is_syncing


def test_remote_rows_are_downloaded(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    remote_row = make_record("Y", "/sdcard/DCIM/y.jpg", SyncStatus.SYNCED, date_path="2023/01/09")
    remote = CloudMappingTable(
        device_id="phone", device_name="Phone", last_updated=datetime(2024, 1, 1), mappings=[remote_row]
    )
    transport.add_file("/EchoPixel/.mappings/phone/mapping.json", remote.encode().encode())
    transport.add_file(remote_row.cloud_path, b"from phone")
    orchestrator = _orchestrator(settings, transport)

    result = orchestrator.start_sync()

    assert result.ok
    target = settings.media_cache_dir / "2023" / "01" / "09" / "y.jpg"
    assert target.read_bytes() == b"from phone"
    assert orchestrator.table.find("Y").sync_status is SyncStatus.SYNCED


def test_failed_rows_are_retried_next_pass(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    path = tmp_path / "photos" / "retry.jpg"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"retry me")
    _seed_table(settings, make_record("r", str(path), SyncStatus.ERROR))

    result = _orchestrator(settings, transport).start_sync()

    assert result.ok
    assert transport.files["/EchoPixel/2024/05/01/retry.jpg"] == b"retry me"


def test_apply_scan_persists_pending_uploads(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    record = _photo(tmp_path, "B.png", b"image B")
    orchestrator = _orchestrator(settings, transport)

    table = orchestrator.apply_scan(build_indices([record]))

    assert table.find(record.id).sync_status is SyncStatus.PENDING_UPLOAD
    stored = CloudMappingTable.decode(settings.mapping_file.read_text(encoding="utf-8"))
    assert stored.find(record.id).sync_status is SyncStatus.PENDING_UPLOAD


def test_listener_errors_do_not_break_the_pass(settings: SyncSettings, transport: FakeTransport) -> None:
    orchestrator = _orchestrator(settings, transport)

    def broken(event) -> None:
        raise RuntimeError("listener bug")

    unsubscribe = orchestrator.events.subscribe(broken)
    result = orchestrator.start_sync()
    unsubscribe()

    assert result.ok
    assert len(orchestrator.events) == 0


def test_failed_delete_is_retried_next_pass(tmp_path: Path, settings: SyncSettings, transport: FakeTransport) -> None:
    old = make_record("old", str(tmp_path / "photos" / "old.jpg"), SyncStatus.PENDING_DELETE)
    transport.add_file(old.cloud_path, b"old")
    transport.fail_on("delete", old.cloud_path)
    _seed_table(settings, old)
    orchestrator = _orchestrator(settings, transport)

    first = orchestrator.start_sync()

    assert first.ok
    assert orchestrator.table.find("old").sync_status is SyncStatus.ERROR
    assert old.cloud_path in transport.files

    transport.fail.clear()
    second = orchestrator.start_sync()

    assert second.ok
    assert old.cloud_path not in transport.files
    assert "old" not in orchestrator.table


def test_unavailable_root_keeps_cloud_copies(
    tmp_path: Path, app_config: AppConfig, settings: SyncSettings, transport: FakeTransport
) -> None:
    external = tmp_path / "external"
    away = make_record("away", str(external / "DCIM" / "a.jpg"), SyncStatus.SYNCED)
    transport.add_file(away.cloud_path, b"away")
    _seed_table(settings, away)
    scanner = MediaScanner(app_config, settings)
    indices = scanner.scan([external])

    result = _orchestrator(settings, transport).start_sync(indices, scanner.last_gaps)

    assert result.ok
    assert transport.methods_for("delete") == []
    assert transport.files[away.cloud_path] == b"away"
