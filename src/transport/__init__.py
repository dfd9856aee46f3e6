"""
Remote file transports.
"""

from .base import NotConnectedError, NotFoundError, RemoteItem, Transport, TransportError
from .webdav import WebDavTransport, normalize_path

__all__ = [
    "NotConnectedError",
    "NotFoundError",
    "RemoteItem",
    "Transport",
    "TransportError",
    "WebDavTransport",
    "normalize_path",
]
