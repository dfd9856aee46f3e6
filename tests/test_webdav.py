from dataclasses import dataclass
from typing import Callable, Optional

import pytest
import requests

from transport import NotConnectedError, NotFoundError, TransportError, WebDavTransport, normalize_path

BASE = "https://dav.example.com/remote.php/dav/files/me"

MULTISTATUS = b"""<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/remote.php/dav/files/me/EchoPixel/.mappings/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/me/EchoPixel/.mappings/device%20one/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>https://dav.example.com/remote.php/dav/files/me/EchoPixel/.mappings/readme.txt</d:href>
    <d:propstat><d:prop><d:resourcetype/><d:getcontentlength>12</d:getcontentlength></d:prop></d:propstat>
  </d:response>
</d:multistatus>
"""


@dataclass
class FakeResponse:
    status_code: int
    content: bytes = b""


class FakeSession:
    def __init__(self, handler: Callable[[str, str], FakeResponse]) -> None:
        self.handler = handler
        self.requests: list[tuple[str, str]] = []
        self.auth: Optional[tuple[str, str]] = None

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.requests.append((method, url))
        return self.handler(method, url)


def _connected(handler: Callable[[str, str], FakeResponse]) -> tuple[WebDavTransport, FakeSession]:
    def route(method: str, url: str) -> FakeResponse:
        if method == "PROPFIND" and url == BASE + "/":
            return FakeResponse(207)
        return handler(method, url)

    session = FakeSession(route)
    transport = WebDavTransport(session=session)
    assert transport.connect(BASE, ("me", "secret"))
    return transport, session


def test_normalize_path() -> None:
    assert normalize_path("") == "/"
    assert normalize_path("EchoPixel/2024/") == "/EchoPixel/2024"
    assert normalize_path("/a//b/./c") == "/a/b/c"


def test_connect_sets_auth_and_state() -> None:
    transport, session = _connected(lambda method, url: FakeResponse(500))

    assert transport.is_connected
    assert session.auth == ("me", "secret")


def test_connect_failure() -> None:
    transport = WebDavTransport(session=FakeSession(lambda method, url: FakeResponse(401)))

    assert transport.connect(BASE) is False
    assert not transport.is_connected


def test_operations_require_connection() -> None:
    transport = WebDavTransport(session=FakeSession(lambda method, url: FakeResponse(207)))

    with pytest.raises(NotConnectedError):
        transport.exists("/EchoPixel")


def test_list_parses_multistatus() -> None:
    transport, _ = _connected(lambda method, url: FakeResponse(207, MULTISTATUS))

    items = transport.list("/EchoPixel/.mappings")

    assert [(item.path, item.is_directory) for item in items] == [
        ("/EchoPixel/.mappings/device one", True),
        ("/EchoPixel/.mappings/readme.txt", False),
    ]
    assert items[0].name == "device one"
    assert items[1].size == 12


def test_list_missing_collection_raises_not_found() -> None:
    transport, _ = _connected(lambda method, url: FakeResponse(404))

    with pytest.raises(NotFoundError):
        transport.list("/EchoPixel/.mappings")


def test_exists_distinguishes_missing_from_failure() -> None:
    statuses = {BASE + "/EchoPixel/a.jpg": 207, BASE + "/EchoPixel/b.jpg": 404}
    transport, _ = _connected(lambda method, url: FakeResponse(statuses.get(url, 503)))

    assert transport.exists("/EchoPixel/a.jpg") is True
    assert transport.exists("/EchoPixel/b.jpg") is False
    with pytest.raises(TransportError):
        transport.exists("/EchoPixel/c.jpg")


def test_put_into_missing_collection_raises_not_found() -> None:
    transport, session = _connected(lambda method, url: FakeResponse(409))

    with pytest.raises(NotFoundError):
        transport.put("/EchoPixel/2024/05/01/a b.jpg", b"data")
    assert session.requests[-1] == ("PUT", BASE + "/EchoPixel/2024/05/01/a%20b.jpg")


def test_mkdir_recursive_creates_missing_ancestors() -> None:
    existing = {BASE + "/EchoPixel"}

    def handler(method: str, url: str) -> FakeResponse:
        if method == "PROPFIND":
            return FakeResponse(207 if url in existing else 404)
        if method == "MKCOL":
            existing.add(url)
            return FakeResponse(201)
        return FakeResponse(500)

    transport, session = _connected(handler)

    assert transport.mkdir_recursive("/EchoPixel/2024/05/01") is True
    created = [url for method, url in session.requests if method == "MKCOL"]
    assert created == [
        BASE + "/EchoPixel/2024",
        BASE + "/EchoPixel/2024/05",
        BASE + "/EchoPixel/2024/05/01",
    ]


def test_mkdir_accepts_existing_collection() -> None:
    transport, _ = _connected(lambda method, url: FakeResponse(405))

    assert transport.mkdir("/EchoPixel") is True


def test_get_and_delete() -> None:
    def handler(method: str, url: str) -> FakeResponse:
        if method == "GET":
            return FakeResponse(200, b"payload")
        if method == "DELETE":
            return FakeResponse(204)
        return FakeResponse(500)

    transport, _ = _connected(handler)

    assert transport.get("/EchoPixel/a.jpg") == b"payload"
    assert transport.delete("/EchoPixel/a.jpg") is True


def test_network_errors_become_transport_errors() -> None:
    def handler(method: str, url: str) -> FakeResponse:
        if method == "GET":
            raise requests.ConnectionError("connection reset")
        return FakeResponse(207)

    transport, _ = _connected(handler)

    with pytest.raises(TransportError):
        transport.get("/EchoPixel/a.jpg")
