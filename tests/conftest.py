import posixpath
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

from config import AppConfig, SyncSettings
from mapping import MappingRecord, SyncStatus
from transport import NotConnectedError, NotFoundError, RemoteItem, Transport, TransportError


class FakeTransport(Transport):
    """In-memory WebDAV-like store that records every call."""

    def __init__(self, connected: bool = True, put_delay: float = 0.0) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {"/"}
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], Exception] = {}
        self.put_delay = put_delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._connected = connected
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self, endpoint: str, credentials: Optional[tuple[str, str]] = None) -> bool:
        self._connected = True
        return True

    def fail_on(self, method: str, path: str, error: Optional[Exception] = None) -> None:
        self.fail[(method, path)] = error or TransportError(f"injected {method} failure")

    def add_file(self, path: str, data: bytes) -> None:
        self.files[path] = data
        parent = posixpath.dirname(path)
        while parent not in self.dirs:
            self.dirs.add(parent)
            parent = posixpath.dirname(parent)

    def methods_for(self, method: str) -> list[str]:
        with self._lock:
            return [path for name, path in self.calls if name == method]

    def _record(self, method: str, path: str) -> None:
        if not self._connected:
            raise NotConnectedError("not connected")
        with self._lock:
            self.calls.append((method, path))
        error = self.fail.get((method, path))
        if error is not None:
            raise error

    def list(self, path: str) -> list[RemoteItem]:
        self._record("list", path)
        if path not in self.dirs:
            raise NotFoundError(path, status_code=404)
        items = [
            RemoteItem(path=entry, name=posixpath.basename(entry), is_directory=True)
            for entry in sorted(self.dirs)
            if entry != "/" and posixpath.dirname(entry) == path
        ]
        items.extend(
            RemoteItem(path=entry, name=posixpath.basename(entry), is_directory=False, size=len(data))
            for entry, data in sorted(self.files.items())
            if posixpath.dirname(entry) == path
        )
        return items

    def mkdir(self, path: str) -> bool:
        self._record("mkdir", path)
        if posixpath.dirname(path) not in self.dirs:
            raise NotFoundError(path, status_code=409)
        self.dirs.add(path)
        return True

    def mkdir_recursive(self, path: str) -> bool:
        self._record("mkdir_recursive", path)
        current = path
        while current not in self.dirs:
            self.dirs.add(current)
            current = posixpath.dirname(current)
        return True

    def exists(self, path: str) -> bool:
        self._record("exists", path)
        return path in self.files or path in self.dirs

    def get(self, path: str) -> bytes:
        self._record("get", path)
        if path not in self.files:
            raise NotFoundError(path, status_code=404)
        return self.files[path]

    def put(self, path: str, data: bytes) -> bool:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self._record("put", path)
            if self.put_delay:
                time.sleep(self.put_delay)
            if posixpath.dirname(path) not in self.dirs:
                raise NotFoundError(path, status_code=409)
            with self._lock:
                self.files[path] = data
            return True
        finally:
            with self._lock:
                self.in_flight -= 1

    def delete(self, path: str) -> bool:
        self._record("delete", path)
        if path not in self.files:
            raise NotFoundError(path, status_code=404)
        del self.files[path]
        return True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig.from_mapping(
        {
            "sync": {"namespace": "EchoPixel", "max_concurrent_transfers": 3},
            "paths": {"state": "state", "logs": "logs"},
            "scan": {"roots": ["photos"]},
            "device": {"name": "test-device"},
            "resource_limits": {"threads": {"scanning": 1}},
        },
        root_dir=tmp_path,
    )


@pytest.fixture
def settings(app_config: AppConfig) -> SyncSettings:
    return SyncSettings.from_config(app_config)


def make_record(
    media_id: str,
    local_path: str,
    status: SyncStatus = SyncStatus.SYNCED,
    date_path: str = "2024/05/01",
    size: int = 10,
) -> MappingRecord:
    name = Path(local_path).name
    return MappingRecord(
        media_id=media_id,
        local_path=local_path,
        cloud_path=f"/EchoPixel/{date_path}/{name}",
        media_type="image",
        created_at=datetime(2024, 5, 1, 12, 0, 0),
        file_size=size,
        last_synced=datetime(2024, 5, 2, 8, 30, 0, 123456),
        sync_status=status,
    )
