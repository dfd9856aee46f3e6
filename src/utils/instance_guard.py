"""
Single-instance guard so two processes never sync the same state directory.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TextIO

ENV_ALLOW_MULTI_INSTANCE = "MEDIA_SYNC_ALLOW_MULTI_INSTANCE"
LOCK_FILE_NAME = "media_sync.lock"


class InstanceLockError(RuntimeError):
    """Raised when another instance is already running."""


@dataclass(frozen=True)
class InstanceLock:
    """Holds the lock file handle to keep the lock alive."""

    handle: TextIO
    path: Path

    def release(self) -> None:
        self.handle.close()


def _lock_file(handle: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        try:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError as exc:
            raise InstanceLockError("Another instance is already running.") from exc
    else:
        import fcntl

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise InstanceLockError("Another instance is already running.") from exc


def _write_lock_info(handle: TextIO) -> None:
    handle.seek(0)
    handle.truncate()
    info = [
        f"pid={os.getpid()}",
        f"argv={' '.join(sys.argv)}",
    ]
    handle.write("\n".join(info))
    handle.flush()


def acquire_instance_lock(state_dir: Path) -> Optional[InstanceLock]:
    """Lock ``state_dir`` for this process or raise InstanceLockError.

    Returns None without locking when multiple instances are explicitly allowed.
    """
    if os.environ.get(ENV_ALLOW_MULTI_INSTANCE) == "1":
        return None
    lock_path = state_dir / LOCK_FILE_NAME
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        _lock_file(handle)
        _write_lock_info(handle)
    except Exception:
        handle.close()
        raise
    return InstanceLock(handle=handle, path=lock_path)
