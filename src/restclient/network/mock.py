"""
Mock network implementations for testing.

This module provides mock implementations of NetworkStream and NetworkBackend
that can be used for unit testing without requiring actual network connections.
Responses are scripted as raw HTTP bytes; every request written by the client
can be inspected afterwards.
"""

import ssl
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple
from .stream import NetworkStream
from .backend import NetworkBackend


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.
    
    This implementation simulates a network stream in memory. Data is
    delivered in segments: each read returns bytes from one segment
    only, the way a socket returns what arrived in one packet.
    """
    
    def __init__(self, data: bytes = b"", read_error: Optional[Exception] = None):
        """
        Initialize the mock stream.
        
        Args:
            data: Initial data to be available for reading.
            read_error: Raised by read() once all data was consumed,
                instead of signalling end of stream.
        """
        self._segments: Deque[bytes] = deque([data] if data else [])
        self._closed = False
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []
        self._read_error = read_error
        self.timeouts: List[Optional[float]] = []
    
    def read(self, max_bytes: int = 65536) -> bytes:
        """
        Read data from the mock stream.
        
        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")
        
        if not self._segments:
            if self._read_error is not None:
                raise self._read_error
            return b""
        
        segment = self._segments.popleft()
        if len(segment) > max_bytes:
            self._segments.appendleft(segment[max_bytes:])
            segment = segment[:max_bytes]
        return segment
    
    def write(self, data: bytes) -> None:
        """
        Write data to the mock stream.
        
        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")
        
        self._write_buffer.append(data)
    
    def close(self) -> None:
        """Close the mock stream."""
        self._closed = True
    
    def set_timeout(self, timeout: Optional[float]) -> None:
        """Record the timeout; the mock never blocks."""
        self.timeouts.append(timeout)
    
    def get_extra_info(self, name: str) -> Optional[Any]:
        """Get extra information about the mock stream."""
        return self._extra_info.get(name)
    
    @property
    def is_closed(self) -> bool:
        """Check if the mock stream is closed."""
        return self._closed
    
    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)
    
    def set_extra_info(self, name: str, value: Any) -> None:
        """Set extra information for the mock stream."""
        self._extra_info[name] = value
    
    def add_data(self, data: bytes) -> None:
        """Add a segment of data to be available for reading."""
        self._segments.append(data)


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.
    
    Each ``connect_tcp``/``connect_unix`` call consumes the next scripted
    stream for that endpoint. An endpoint with nothing scripted refuses
    the connection.
    """
    
    def __init__(self):
        """Initialize the mock backend."""
        self._scripted: Dict[Tuple[str, Any], Deque[MockNetworkStream]] = defaultdict(deque)
        self._connect_errors: Dict[Tuple[str, Any], Exception] = {}
        self._tls_errors: Dict[str, Exception] = {}
        self.streams: List[MockNetworkStream] = []
        self.connections: List[Tuple[str, Any]] = []
        self.tls_hosts: List[str] = []
        self.tls_contexts: List[ssl.SSLContext] = []
    
    def add_response(
        self,
        host: str,
        port: int,
        *segments: bytes,
        read_error: Optional[Exception] = None,
    ) -> MockNetworkStream:
        """
        Script the stream returned by the next connection to host:port.
        
        Args:
            host: The hostname.
            port: The port number.
            segments: Raw bytes the server sends, one read per segment.
            read_error: Raised once all segments were read.
        
        Returns:
            The scripted stream, for later inspection.
        """
        stream = MockNetworkStream(read_error=read_error)
        for segment in segments:
            stream.add_data(segment)
        self._scripted[(host, port)].append(stream)
        return stream
    
    def add_unix_response(self, path: str, *segments: bytes) -> MockNetworkStream:
        """Script the stream returned by the next connection to a Unix socket."""
        return self.add_response("unix", path, *segments)
    
    def fail_connect(self, host: str, port: int, error: Exception) -> None:
        """Make every connection to host:port raise ``error``."""
        self._connect_errors[(host, port)] = error
    
    def fail_tls(self, host: str, error: Exception) -> None:
        """Make the TLS handshake with ``host`` raise ``error``."""
        self._tls_errors[host] = error
    
    def _open(self, key: Tuple[str, Any]) -> MockNetworkStream:
        self.connections.append(key)
        if key in self._connect_errors:
            raise self._connect_errors[key]
        if not self._scripted[key]:
            raise ConnectionRefusedError(f"Connection refused: {key[0]}:{key[1]}")
        
        stream = self._scripted[key].popleft()
        stream.set_extra_info("peername", key)
        stream.set_extra_info("sockname", ("127.0.0.1", 12345))
        stream.set_extra_info("name_lookup_time", 0.0)
        self.streams.append(stream)
        return stream
    
    def connect_tcp(
        self, 
        host: str, 
        port: int, 
        timeout: Optional[float] = None
    ) -> MockNetworkStream:
        """Create a mock TCP connection."""
        return self._open((host, port))
    
    def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        """Create a mock Unix socket connection."""
        return self._open(("unix", path))
    
    def connect_tls(
        self,
        stream: MockNetworkStream,
        host: str,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        """
        Pretend to start TLS on an existing mock stream.
        
        The same stream is returned with TLS info attached, so scripted
        data keeps flowing through it.
        """
        self.tls_hosts.append(host)
        self.tls_contexts.append(ssl_context)
        if host in self._tls_errors:
            raise self._tls_errors[host]
        
        stream.set_extra_info("ssl_object", True)
        stream.set_extra_info("server_hostname", host)
        return stream
    
    def requests_sent(self) -> List[bytes]:
        """Get the raw bytes written on every stream, in connection order."""
        return [stream.written_data for stream in self.streams]
    
    def reset(self) -> None:
        """Reset all mock connections."""
        self._scripted.clear()
        self._connect_errors.clear()
        self._tls_errors.clear()
        self.streams.clear()
        self.connections.clear()
        self.tls_hosts.clear()
        self.tls_contexts.clear()
