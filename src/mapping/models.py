"""
Per-device cloud mapping table: media id -> local path, cloud path and sync status.
"""

from __future__ import annotations

import json
import posixpath
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from utils.serialization import format_timestamp, parse_timestamp


class MappingParseError(ValueError):
    """Raised when a serialized mapping table cannot be decoded."""


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING_UPLOAD = "pendingUpload"
    PENDING_DOWNLOAD = "pendingDownload"
    PENDING_DELETE = "pendingDelete"
    # Reserved: nothing produces conflicts, local rows always win a merge.
    CONFLICT = "conflict"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "SyncStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class MappingRecord:
    """One row of a device's mapping table."""

    media_id: str
    local_path: str
    cloud_path: str
    media_type: str
    created_at: datetime
    file_size: int
    last_synced: datetime
    sync_status: SyncStatus = SyncStatus.SYNCED

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.cloud_path) or posixpath.basename(self.local_path)

    def relative_path(self, namespace: str) -> str:
        """Return ``YYYY/MM/DD/name`` relative to the cloud namespace root."""
        prefix = f"{namespace.strip('/')}/"
        position = self.cloud_path.rfind(prefix)
        if position == -1:
            return self.cloud_path.lstrip("/")
        return self.cloud_path[position + len(prefix) :]

    def with_status(self, status: SyncStatus, now: Optional[datetime] = None) -> "MappingRecord":
        return replace(self, sync_status=status, last_synced=now or datetime.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaId": self.media_id,
            "localPath": self.local_path,
            "cloudPath": self.cloud_path,
            "mediaType": self.media_type,
            "createdAt": format_timestamp(self.created_at),
            "fileSize": self.file_size,
            "lastSynced": format_timestamp(self.last_synced),
            "syncStatus": self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingRecord":
        return cls(
            media_id=str(data["mediaId"]),
            local_path=str(data["localPath"]),
            cloud_path=str(data["cloudPath"]),
            media_type=str(data["mediaType"]),
            created_at=parse_timestamp(data["createdAt"]),
            file_size=int(data["fileSize"]),
            last_synced=parse_timestamp(data["lastSynced"]),
            sync_status=SyncStatus.parse(data.get("syncStatus")),
        )


@dataclass
class CloudMappingTable:
    """A device's full mapping table, as held locally and published to the cloud.

    Rows are unique per ``media_id``; construction collapses duplicates with
    the last row winning, the same rule ``upsert`` applies.
    """

    device_id: str
    device_name: str
    last_updated: datetime
    mappings: list[MappingRecord] = field(default_factory=list)
    _positions: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rows = list(self.mappings)
        self.mappings = []
        self._positions = {}
        for row in rows:
            self.upsert(row)

    @classmethod
    def empty(cls, device_id: str, device_name: str, now: Optional[datetime] = None) -> "CloudMappingTable":
        return cls(device_id=device_id, device_name=device_name, last_updated=now or datetime.now())

    def __len__(self) -> int:
        return len(self.mappings)

    def __contains__(self, media_id: object) -> bool:
        return media_id in self._positions

    def find(self, media_id: str) -> Optional[MappingRecord]:
        position = self._positions.get(media_id)
        return self.mappings[position] if position is not None else None

    def upsert(self, record: MappingRecord) -> None:
        position = self._positions.get(record.media_id)
        if position is None:
            self._positions[record.media_id] = len(self.mappings)
            self.mappings.append(record)
        else:
            self.mappings[position] = record

    def remove(self, media_id: str) -> bool:
        position = self._positions.pop(media_id, None)
        if position is None:
            return False
        del self.mappings[position]
        for row in self.mappings[position:]:
            self._positions[row.media_id] -= 1
        return True

    def media_ids(self) -> set[str]:
        return set(self._positions)

    def with_status(self, status: SyncStatus) -> list[MappingRecord]:
        return [row for row in self.mappings if row.sync_status is status]

    def status_counts(self) -> Dict[SyncStatus, int]:
        counts = {status: 0 for status in SyncStatus}
        for row in self.mappings:
            counts[row.sync_status] += 1
        return counts

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_updated = now or datetime.now()

    def copy(self) -> "CloudMappingTable":
        return CloudMappingTable(
            device_id=self.device_id,
            device_name=self.device_name,
            last_updated=self.last_updated,
            mappings=list(self.mappings),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "lastUpdated": format_timestamp(self.last_updated),
            "mappings": [row.to_dict() for row in self.mappings],
        }

    def encode(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloudMappingTable":
        return cls(
            device_id=str(data["deviceId"]),
            device_name=str(data["deviceName"]),
            last_updated=parse_timestamp(data["lastUpdated"]),
            mappings=[MappingRecord.from_dict(item) for item in _as_list(data["mappings"])],
        )

    @classmethod
    def decode(cls, text: str | bytes) -> "CloudMappingTable":
        """Decode a serialized table, raising MappingParseError on any malformation."""
        try:
            if isinstance(text, bytes):
                text = text.decode("utf-8")
            data = json.loads(text)
            if not isinstance(data, dict):
                raise MappingParseError("Mapping table must be a JSON object")
            return cls.from_dict(data)
        except MappingParseError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise MappingParseError(f"Malformed mapping table: {exc}") from exc


def _as_list(value: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(value, list):
        raise TypeError("mappings must be a list")
    return value
