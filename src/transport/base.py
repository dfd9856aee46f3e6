"""
Remote file transport capability consumed by the sync engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class TransportError(RuntimeError):
    """A transport operation failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """The target, or the collection that should contain it, does not exist."""


class NotConnectedError(TransportError):
    """The transport has not been connected or authenticated."""


@dataclass(frozen=True)
class RemoteItem:
    path: str
    name: str
    is_directory: bool
    size: Optional[int] = None


class Transport(ABC):
    """WebDAV-like file store.

    Paths are absolute POSIX paths inside the store (``/EchoPixel/2024/...``).
    Every operation may raise ``NotFoundError`` or another ``TransportError``.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Return True once ``connect`` has succeeded."""

    @abstractmethod
    def connect(self, endpoint: str, credentials: Optional[tuple[str, str]] = None) -> bool:
        """Open and verify a connection; return whether it succeeded."""

    @abstractmethod
    def list(self, path: str) -> list[RemoteItem]:
        """List the direct children of a collection."""

    @abstractmethod
    def mkdir(self, path: str) -> bool:
        """Create a single collection whose parent exists."""

    @abstractmethod
    def mkdir_recursive(self, path: str) -> bool:
        """Create a collection and any missing ancestors."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return whether a file or collection exists at ``path``."""

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Return the content of a file."""

    @abstractmethod
    def put(self, path: str, data: bytes) -> bool:
        """Store ``data`` at ``path``; the parent collection must exist."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete a file or collection."""
