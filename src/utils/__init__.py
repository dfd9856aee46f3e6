"""
Utility helpers for the media sync engine.
"""

from .instance_guard import InstanceLock, InstanceLockError, acquire_instance_lock
from .logging_setup import setup_logging
from .resource_monitor import ResourceMonitor
from .serialization import atomic_write_bytes, atomic_write_text, format_timestamp, parse_timestamp

__all__ = [
    "setup_logging",
    "ResourceMonitor",
    "InstanceLock",
    "InstanceLockError",
    "acquire_instance_lock",
    "atomic_write_bytes",
    "atomic_write_text",
    "format_timestamp",
    "parse_timestamp",
]
