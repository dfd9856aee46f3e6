"""
Cloud mapping table, its local store and the device identity.
"""

from .device import DeviceInfo, DeviceRegistry, DeviceType
from .models import CloudMappingTable, MappingParseError, MappingRecord, SyncStatus
from .store import MappingStore

__all__ = [
    "CloudMappingTable",
    "DeviceInfo",
    "DeviceRegistry",
    "DeviceType",
    "MappingParseError",
    "MappingRecord",
    "MappingStore",
    "SyncStatus",
]
