"""
Device identity, generated once per installation and persisted.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from utils.serialization import atomic_write_text, format_timestamp, parse_timestamp


class DeviceType(str, Enum):
    ANDROID = "android"
    IOS = "ios"
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    WEB = "web"
    OTHER = "other"

    @classmethod
    def current(cls) -> "DeviceType":
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        if sys.platform.startswith("linux"):
            return cls.LINUX
        return cls.OTHER


@dataclass(frozen=True)
class DeviceInfo:
    uuid: str
    name: str
    type: DeviceType
    last_sync_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "type": self.type.value,
            "lastSyncTime": format_timestamp(self.last_sync_time) if self.last_sync_time else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceInfo":
        last_sync = data.get("lastSyncTime")
        try:
            device_type = DeviceType(data.get("type"))
        except ValueError:
            device_type = DeviceType.OTHER
        return cls(
            uuid=str(data["uuid"]),
            name=str(data["name"]),
            type=device_type,
            last_sync_time=parse_timestamp(last_sync) if last_sync else None,
        )


class DeviceRegistry:
    """Read and update the persisted ``device.json``."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.logger = logger or logging.getLogger("media_sync")
        self._device: Optional[DeviceInfo] = None

    def load_or_create(self, default_name: str) -> DeviceInfo:
        if self._device is not None:
            return self._device
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                self._device = DeviceInfo.from_dict(data)
                return self._device
            except (OSError, ValueError, KeyError, TypeError) as exc:
                # Without the stored id this installation would appear as a new device.
                raise RuntimeError(f"Device identity file {self.path} is unreadable: {exc}") from exc
        self._device = DeviceInfo(uuid=str(uuid.uuid4()), name=default_name, type=DeviceType.current())
        self._write(self._device)
        self.logger.info("Registered new device %s (%s)", self._device.uuid, self._device.name)
        return self._device

    def update_name(self, name: str) -> DeviceInfo:
        return self._update(name=name)

    def update_last_sync(self, now: Optional[datetime] = None) -> DeviceInfo:
        return self._update(last_sync_time=now or datetime.now())

    def _update(self, **changes: Any) -> DeviceInfo:
        if self._device is None:
            raise RuntimeError("Device identity not loaded")
        self._device = replace(self._device, **changes)
        self._write(self._device)
        return self._device

    def _write(self, device: DeviceInfo) -> None:
        atomic_write_text(self.path, json.dumps(device.to_dict(), indent=2))
