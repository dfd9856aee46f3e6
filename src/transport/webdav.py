"""
WebDAV transport over ``requests``.
"""

from __future__ import annotations

import logging
import posixpath
import xml.etree.ElementTree as ET
from typing import Iterable, Optional
from urllib.parse import quote, unquote, urlparse

import requests

from transport.base import NotConnectedError, NotFoundError, RemoteItem, Transport, TransportError

DAV_NS = "{DAV:}"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<D:propfind xmlns:D="DAV:"><D:prop>'
    "<D:resourcetype/><D:getcontentlength/>"
    "</D:prop></D:propfind>"
)


def normalize_path(path: str) -> str:
    """Return an absolute POSIX path without a trailing slash (``/`` for root)."""
    normalized = posixpath.normpath("/" + (path or "").strip("/"))
    return "/" if normalized in ("", "//") else normalized


class WebDavTransport(Transport):
    """Talk to a WebDAV server with PROPFIND, MKCOL, GET, PUT and DELETE."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
        verify: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify
        self.logger = logger or logging.getLogger("media_sync")
        self._base_url: Optional[str] = None
        self._base_path = ""
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self, endpoint: str, credentials: Optional[tuple[str, str]] = None) -> bool:
        self._base_url = endpoint.rstrip("/")
        self._base_path = urlparse(self._base_url).path.rstrip("/")
        if credentials is not None:
            self._session.auth = credentials
        self._connected = False
        try:
            response = self._send("PROPFIND", "/", headers={"Depth": "0"}, data=PROPFIND_BODY)
        except TransportError as exc:
            self.logger.warning("WebDAV connect to %s failed: %s", self._base_url, exc)
            return False
        self._connected = response.status_code in (200, 207)
        if not self._connected:
            self.logger.warning(
                "WebDAV connect to %s rejected with HTTP %s", self._base_url, response.status_code
            )
        return self._connected

    def list(self, path: str) -> list[RemoteItem]:
        response = self._request("PROPFIND", path, headers={"Depth": "1"}, data=PROPFIND_BODY)
        self._check(response, "list", path, ok=(207,))
        return list(self._parse_multistatus(response.content, path))

    def mkdir(self, path: str) -> bool:
        response = self._request("MKCOL", path)
        if response.status_code in (200, 201):
            return True
        if response.status_code == 405:
            # MKCOL on an existing collection.
            return True
        if response.status_code == 409:
            raise NotFoundError(f"Parent collection missing for {path}", status_code=409)
        self.logger.warning("WebDAV MKCOL %s returned HTTP %s", path, response.status_code)
        return False

    def mkdir_recursive(self, path: str) -> bool:
        missing: list[str] = []
        current = normalize_path(path)
        while current != "/" and not self.exists(current):
            missing.append(current)
            current = posixpath.dirname(current)
        for directory in reversed(missing):
            if not self.mkdir(directory):
                return False
        return True

    def exists(self, path: str) -> bool:
        response = self._request("PROPFIND", path, headers={"Depth": "0"}, data=PROPFIND_BODY)
        if response.status_code in (200, 207):
            return True
        if response.status_code == 404:
            return False
        raise TransportError(
            f"WebDAV exists check for {path} failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    def get(self, path: str) -> bytes:
        response = self._request("GET", path)
        self._check(response, "download", path, ok=(200,))
        return response.content

    def put(self, path: str, data: bytes) -> bool:
        response = self._request(
            "PUT",
            path,
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._check(response, "upload", path, ok=(200, 201, 204))
        return True

    def delete(self, path: str) -> bool:
        response = self._request("DELETE", path)
        self._check(response, "delete", path, ok=(200, 204))
        return True

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self._connected:
            raise NotConnectedError("WebDAV not connected")
        return self._send(method, path, **kwargs)

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        if self._base_url is None:
            raise NotConnectedError("WebDAV not configured")
        url = self._url(path)
        try:
            return self._session.request(method, url, timeout=self.timeout, verify=self.verify, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"WebDAV {method} {path} failed: {exc}") from exc

    def _url(self, path: str) -> str:
        normalized = normalize_path(path)
        suffix = "/" if normalized == "/" else quote(normalized, safe="/")
        return f"{self._base_url}{suffix}"

    def _check(self, response: requests.Response, action: str, path: str, ok: tuple[int, ...]) -> None:
        if response.status_code in ok:
            return
        if response.status_code in (404, 409):
            raise NotFoundError(
                f"WebDAV {action} {path}: not found (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        raise TransportError(
            f"WebDAV {action} {path} failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    def _parse_multistatus(self, content: bytes, requested: str) -> Iterable[RemoteItem]:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as exc:
            raise TransportError(f"Invalid PROPFIND response for {requested}: {exc}") from exc
        requested_path = normalize_path(requested)
        for response in root.iter(f"{DAV_NS}response"):
            href = response.findtext(f"{DAV_NS}href")
            if not href:
                continue
            item_path = self._store_path(href)
            if item_path == requested_path:
                continue
            is_directory = response.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection") is not None
            length = response.findtext(f".//{DAV_NS}getcontentlength")
            yield RemoteItem(
                path=item_path,
                name=posixpath.basename(item_path),
                is_directory=is_directory,
                size=int(length) if length and length.strip().isdigit() else None,
            )

    def _store_path(self, href: str) -> str:
        """Convert a server href into a path relative to the endpoint."""
        path = unquote(urlparse(href.strip()).path)
        if self._base_path and (path == self._base_path or path.startswith(self._base_path + "/")):
            path = path[len(self._base_path) :]
        return normalize_path(path)
