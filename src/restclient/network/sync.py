"""
Blocking socket backend for restclient.

Streams wrap plain ``socket.socket`` / ``ssl.SSLSocket`` objects in
blocking mode with per-operation timeouts.
"""

import logging
import socket
import ssl
import time
from typing import Any, Optional, Union

from .backend import NetworkBackend
from .stream import NetworkStream
from .utils import create_socket, set_socket_timeout

logger = logging.getLogger(__name__)


class SocketNetworkStream(NetworkStream):
    """NetworkStream over a connected blocking socket."""

    def __init__(
        self,
        sock: Union[socket.socket, ssl.SSLSocket],
        name_lookup_time: float = 0.0,
    ) -> None:
        self.sock = sock
        self.closed = False
        self._name_lookup_time = name_lookup_time

    def read(self, max_bytes: int = 65536) -> bytes:
        if self.closed:
            raise RuntimeError("Stream is closed")
        return self.sock.recv(max_bytes)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise RuntimeError("Stream is closed")
        self.sock.sendall(data)

    def close(self) -> None:
        if not self.closed:
            try:
                self.sock.close()
            except OSError as e:
                logger.warning(f"Error closing socket: {e}")
            self.closed = True

    def set_timeout(self, timeout: Optional[float]) -> None:
        set_socket_timeout(self.sock, timeout)

    def get_extra_info(self, name: str) -> Optional[Any]:
        if name == "socket":
            return self.sock
        elif name == "peername":
            try:
                return self.sock.getpeername()
            except OSError:
                return None
        elif name == "sockname":
            try:
                return self.sock.getsockname()
            except OSError:
                return None
        elif name == "ssl_object":
            return isinstance(self.sock, ssl.SSLSocket)
        elif name == "name_lookup_time":
            return self._name_lookup_time
        return None

    @property
    def is_closed(self) -> bool:
        return self.closed


class SyncNetworkBackend(NetworkBackend):
    """Network backend using blocking sockets from the standard library."""

    def connect_tcp(
        self, host: str, port: int, timeout: Optional[float] = None
    ) -> SocketNetworkStream:
        start = time.monotonic()
        addresses = socket.getaddrinfo(host, port, 0, socket.SOCK_STREAM)
        lookup_time = time.monotonic() - start

        last_error: Optional[OSError] = None
        for family, type_, proto, _, sockaddr in addresses:
            sock = create_socket(family, type_, proto)
            set_socket_timeout(sock, timeout)
            try:
                sock.connect(sockaddr)
            except OSError as e:
                sock.close()
                last_error = e
                logger.debug(f"Connect to {sockaddr} failed: {e}")
                continue
            return SocketNetworkStream(sock, name_lookup_time=lookup_time)

        if last_error is not None:
            raise last_error
        raise OSError(f"No addresses found for {host}:{port}")

    def connect_unix(
        self, path: str, timeout: Optional[float] = None
    ) -> SocketNetworkStream:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        set_socket_timeout(sock, timeout)
        try:
            sock.connect(path)
        except OSError:
            sock.close()
            raise
        return SocketNetworkStream(sock)

    def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
    ) -> SocketNetworkStream:
        sock = stream.get_extra_info("socket")
        set_socket_timeout(sock, timeout)
        ssl_sock = ssl_context.wrap_socket(sock, server_hostname=host)
        return SocketNetworkStream(
            ssl_sock,
            name_lookup_time=stream.get_extra_info("name_lookup_time") or 0.0,
        )
