"""
Local persistence of the device's mapping table.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from mapping.device import DeviceInfo
from mapping.models import CloudMappingTable, MappingParseError
from utils.serialization import atomic_write_text


class MappingStore:
    """Load and atomically rewrite the local ``cloud_mapping.json``."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.logger = logger or logging.getLogger("media_sync")
        self.last_load_recovered = False
        self.last_load_error: Optional[str] = None

    def load(self, device: DeviceInfo) -> CloudMappingTable:
        """Load the table, creating a fresh one when missing or unreadable.

        A malformed file is moved aside so its content is not lost, and
        ``last_load_recovered`` is set for the caller to report.
        """
        self.last_load_recovered = False
        self.last_load_error = None
        if not self.path.exists():
            table = CloudMappingTable.empty(device.uuid, device.name)
            self.save(table)
            self.logger.info("Created new mapping table at %s", self.path)
            return table
        try:
            table = CloudMappingTable.decode(self.path.read_text(encoding="utf-8"))
        except (OSError, MappingParseError) as exc:
            backup = self._quarantine()
            self.last_load_recovered = True
            self.last_load_error = f"Local mapping table unreadable ({exc}); reset to empty"
            self.logger.error(
                "Local mapping table %s unreadable: %s. Moved to %s and reset.",
                self.path,
                exc,
                backup,
            )
            table = CloudMappingTable.empty(device.uuid, device.name)
            self.save(table)
            return table
        if table.device_id != device.uuid:
            self.logger.warning(
                "Mapping table device id %s does not match this device (%s); adopting local id",
                table.device_id,
                device.uuid,
            )
            table.device_id = device.uuid
        table.device_name = device.name
        self.logger.info("Loaded mapping table with %s rows", len(table))
        return table

    def save(self, table: CloudMappingTable) -> None:
        atomic_write_text(self.path, table.encode())

    def _quarantine(self) -> Optional[Path]:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            self.path.replace(backup)
        except OSError as exc:
            self.logger.warning("Could not move aside corrupt mapping table: %s", exc)
            return None
        return backup
