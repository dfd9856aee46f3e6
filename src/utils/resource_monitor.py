"""
Resource monitoring used to slow down scan workers on a busy machine.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

import psutil

from config import AppConfig


@dataclass
class ResourceMonitor:
    """Hold back new scan work while CPU or RAM usage exceeds the limits.

    A limit of 0 disables that check.
    """

    max_cpu_percent: float
    max_ram_percent: float
    sleep_seconds: float = 0.5
    max_throttle_seconds: float = 15.0
    min_check_interval_seconds: float = 0.5
    _last_check: float = field(default=0.0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        psutil.cpu_percent(interval=None)

    @classmethod
    def from_config(cls, config: AppConfig) -> "ResourceMonitor":
        return cls(
            max_cpu_percent=float(config.get("resource_limits", "max_cpu_percent", default=0)),
            max_ram_percent=float(config.get("resource_limits", "max_ram_percent", default=0)),
            max_throttle_seconds=float(config.get("resource_limits", "max_throttle_seconds", default=15)),
            min_check_interval_seconds=float(
                config.get("resource_limits", "min_check_interval_seconds", default=0.5)
            ),
        )

    @property
    def enabled(self) -> bool:
        return self.max_cpu_percent > 0 or self.max_ram_percent > 0

    def over_limit(self) -> bool:
        cpu = psutil.cpu_percent(interval=0.1) if self.max_cpu_percent > 0 else 0.0
        ram = psutil.virtual_memory().percent if self.max_ram_percent > 0 else 0.0
        cpu_over = self.max_cpu_percent > 0 and cpu > self.max_cpu_percent
        ram_over = self.max_ram_percent > 0 and ram > self.max_ram_percent
        return cpu_over or ram_over

    def throttle(self) -> float:
        """Sleep while usage is over the limits; return the seconds waited."""
        if not self.enabled:
            return 0.0
        now = time.monotonic()
        with self._lock:
            if (now - self._last_check) < self.min_check_interval_seconds:
                return 0.0
            self._last_check = now
        start_time = time.monotonic()
        while self.over_limit():
            if (time.monotonic() - start_time) >= self.max_throttle_seconds:
                break
            time.sleep(self.sleep_seconds)
        return time.monotonic() - start_time
