"""
Typed notifications published by the sync orchestrator.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from sync.transfers import TransferTask


class SyncEventKind(str, Enum):
    PHASE = "phase"
    PROGRESS = "progress"
    STATUS = "status"
    TASKS = "tasks"
    FINISHED = "finished"


@dataclass(frozen=True)
class SyncEvent:
    kind: SyncEventKind
    phase: str
    progress: int
    message: str = ""
    tasks: tuple[TransferTask, ...] = field(default=())


SyncListener = Callable[[SyncEvent], None]


class SyncEventBus:
    """Fan out events to subscribed listeners.

    Listeners run on the publishing thread, which may be a transfer worker.
    A listener that raises is logged and does not affect the sync pass.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("media_sync")
        self._lock = threading.Lock()
        self._listeners: list[SyncListener] = []

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: SyncEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                self.logger.exception("Sync listener failed handling %s event", event.kind.value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
