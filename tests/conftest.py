"""
Pytest configuration for restclient tests.

This file contains shared fixtures and helpers for building scripted
server responses and parsing the requests the client wrote.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import h11
import pytest

from restclient.connection import Connection
from restclient.lifecycle import Lifecycle
from restclient.network.mock import MockNetworkBackend


@dataclass
class ParsedRequest:
    """A request as seen by the server side."""
    method: str
    target: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def header_names(self) -> List[str]:
        return [key.lower() for key, _ in self.headers]


def http_response(
    status: int = 200,
    headers: Optional[List[Tuple[str, str]]] = None,
    body: bytes = b"",
    reason: str = "OK",
    close: bool = True,
    content_length: Optional[int] = None,
) -> bytes:
    """Build raw HTTP/1.1 response bytes."""
    headers = list(headers or [])
    names = {name.lower() for name, _ in headers}
    if "content-length" not in names and "transfer-encoding" not in names:
        length = len(body) if content_length is None else content_length
        headers.append(("Content-Length", str(length)))
    if close:
        headers.append(("Connection", "close"))

    head = f"HTTP/1.1 {status} {reason}\r\n"
    head += "".join(f"{name}: {value}\r\n" for name, value in headers)
    return head.encode("latin-1") + b"\r\n" + body


def parse_requests(data: bytes) -> List[ParsedRequest]:
    """Parse every request in ``data`` with an h11 server connection."""
    server = h11.Connection(h11.SERVER)
    server.receive_data(data)
    parsed: List[ParsedRequest] = []
    current: Optional[ParsedRequest] = None

    while True:
        event = server.next_event()

        if isinstance(event, h11.Request):
            current = ParsedRequest(
                method=event.method.decode(),
                target=event.target.decode(),
                headers=[(k.decode(), v.decode()) for k, v in event.headers.raw_items()],
            )
        elif isinstance(event, h11.Data):
            current.body += bytes(event.data)
        elif isinstance(event, h11.EndOfMessage) and current.method == "CONNECT":
            # Accept the tunnel and keep parsing what was sent through it
            parsed.append(current)
            server.send(h11.Response(status_code=200, headers=[]))
            trailing, _ = server.trailing_data
            server = h11.Connection(h11.SERVER)
            server.receive_data(trailing)
        elif isinstance(event, h11.EndOfMessage):
            parsed.append(current)
            server.send(h11.Response(status_code=200, headers=[("Content-Length", "0")]))
            server.send(h11.EndOfMessage())
            server.start_next_cycle()
        else:
            return parsed


@pytest.fixture
def mock_backend():
    """Create a mock network backend."""
    return MockNetworkBackend()


@pytest.fixture
def lifecycle():
    """A lifecycle that was never started."""
    return Lifecycle()


@pytest.fixture
def connection(mock_backend, lifecycle):
    """Connection to http://example.com over the mock backend."""
    conn = Connection("http://example.com", backend=mock_backend, lifecycle=lifecycle)
    yield conn
    conn.close()


@pytest.fixture
def sent_requests(mock_backend):
    """Callable returning every request written, across all streams."""
    def _collect() -> List[ParsedRequest]:
        requests: List[ParsedRequest] = []
        for raw in mock_backend.requests_sent():
            requests.extend(parse_requests(raw))
        return requests
    return _collect
