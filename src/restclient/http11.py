"""
HTTP/1.1 connection implementation for restclient.

This module implements the HTTP11Connection class that drives one
blocking HTTP/1.1 request/response cycle at a time over a NetworkStream,
using h11 for the wire protocol. Response bodies are fully buffered.
"""

import logging
import time
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum

import h11

from .http_primitives import Headers, Request, Response
from .network.stream import NetworkStream
from .exceptions import (
    ConnectionError,
    ProtocolError,
    TimeoutError,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of an HTTP/1.1 connection."""
    NEW = "new"           # Connection created, not yet used
    ACTIVE = "active"     # Connection handling a request
    IDLE = "idle"         # Connection available for reuse
    CLOSED = "closed"     # Connection closed, cannot be reused


class HTTP11Connection:
    """
    HTTP/1.1 connection manager.

    This class manages a single HTTP/1.1 connection over a NetworkStream,
    handling request/response cycles with state tracking and keep-alive
    support. It is not safe for concurrent use.
    """

    # Default configuration
    DEFAULT_KEEP_ALIVE_TIMEOUT = 60.0  # seconds a connection may sit idle
    DEFAULT_MAX_REQUESTS = 100  # Maximum requests per connection
    READ_CHUNK_SIZE = 65536

    def __init__(
        self,
        stream: NetworkStream,
        keep_alive_timeout: Optional[float] = None,
        max_requests: Optional[int] = None,
    ):
        """
        Initialize HTTP/1.1 connection.

        Args:
            stream: The NetworkStream to use for communication
            keep_alive_timeout: Seconds an idle connection stays reusable
            max_requests: Maximum number of requests per connection
        """
        self._stream = stream
        self._h11_connection = h11.Connection(h11.CLIENT)
        self._state = ConnectionState.NEW
        self._idle_since: Optional[float] = None

        # Configuration
        self._keep_alive_timeout = keep_alive_timeout or self.DEFAULT_KEEP_ALIVE_TIMEOUT
        self._max_requests = max_requests or self.DEFAULT_MAX_REQUESTS

        # Per-cycle tracking
        self._cycle_bytes_received = 0
        self.first_byte_at: Optional[float] = None

        # Metrics
        self._request_count = 0
        self._bytes_sent = 0
        self._bytes_received = 0
        self._total_request_time = 0.0
        self._errors_count = 0
        self._last_request_time: Optional[float] = None

        logger.debug("HTTP/1.1 connection initialized")

    def handle_request(
        self,
        request: Request,
        deadline: Optional[float] = None,
    ) -> Response:
        """
        Handle a complete HTTP request/response cycle.

        Args:
            request: The HTTP request to send
            deadline: ``time.monotonic()`` value after which the
                transaction is abandoned; None waits indefinitely

        Returns:
            The HTTP response with its body fully read

        Raises:
            ConnectionError: If the connection is unusable or the server
                closed it before sending anything
            ProtocolError: If HTTP protocol error occurs
            TimeoutError: If the deadline passes
            OSError: If the socket fails
        """
        start_time = time.monotonic()
        self._acquire_connection()
        self._request_count += 1
        self._last_request_time = start_time

        try:
            self._send_request(request, deadline)
            status_code, raw_headers = self._receive_head(deadline)
            body = self._receive_body(deadline)
        except Exception as e:
            duration = time.monotonic() - start_time
            self._errors_count += 1
            logger.debug(
                f"Request {self._request_count} failed: {e!r} ({duration:.3f}s)"
            )
            # The framing state is unknown after any failure
            self.close()
            raise

        duration = time.monotonic() - start_time
        self._total_request_time += duration
        logger.debug(
            f"Request {self._request_count}: {request.method.decode()} "
            f"{request.target.decode()} -> {status_code} ({duration:.3f}s)"
        )

        self._release_connection()
        return Response.create(code=status_code, raw_headers=raw_headers, body=body)

    def open_tunnel(
        self,
        authority: bytes,
        headers: Headers,
        deadline: Optional[float] = None,
    ) -> None:
        """
        Ask an HTTP proxy for a CONNECT tunnel to ``authority``.

        On success the underlying stream carries raw bytes to the target
        and this object must not be used again.

        Raises:
            ConnectionError: If the proxy refuses the tunnel
            ProtocolError: If the proxy response is malformed
        """
        self._acquire_connection()
        try:
            request = h11.Request(method=b"CONNECT", target=authority, headers=headers)
            self._set_deadline(deadline)
            self._send_event(request)
            self._send_event(h11.EndOfMessage())
            status_code, _ = self._receive_head(deadline)
        except h11.LocalProtocolError as e:
            self.close()
            raise ProtocolError(f"Cannot send CONNECT: {e}", cause=e)
        except Exception:
            self.close()
            raise

        if not 200 <= status_code < 300:
            self.close()
            raise ConnectionError(
                f"Proxy refused CONNECT to {authority.decode()} with status {status_code}"
            )

        trailing, _ = self._h11_connection.trailing_data
        if trailing:
            self.close()
            raise ProtocolError("Proxy sent data before the tunnel was established")

        self._state = ConnectionState.CLOSED
        logger.debug(f"Tunnel established to {authority.decode()}")

    def _set_deadline(self, deadline: Optional[float]) -> None:
        """Bound the next socket operation by the time left until ``deadline``."""
        if deadline is None:
            self._stream.set_timeout(None)
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("Transaction deadline exceeded")
        self._stream.set_timeout(remaining)

    def _send_request(self, request: Request, deadline: Optional[float]) -> None:
        """
        Send HTTP request using h11.

        Args:
            request: The request to send
            deadline: Transaction deadline
        """
        try:
            h11_request = h11.Request(
                method=request.method,
                target=request.target,
                headers=request.headers
            )
            self._set_deadline(deadline)
            self._send_event(h11_request)

            if request.body:
                self._set_deadline(deadline)
                self._send_event(h11.Data(data=request.body))

            self._set_deadline(deadline)
            self._send_event(h11.EndOfMessage())
        except h11.LocalProtocolError as e:
            raise ProtocolError(f"Cannot send request: {e}", cause=e)

    def _send_event(self, event: h11.Event) -> None:
        """
        Send an h11 event to the network stream.

        Args:
            event: The h11 event to send
        """
        data = self._h11_connection.send(event)
        if data:
            self._stream.write(data)
            self._bytes_sent += len(data)

    def _next_event(self, deadline: Optional[float]) -> Any:
        """
        Return the next h11 event, reading from the stream as needed.

        Raises:
            ConnectionError: If the server closes before sending anything
            ProtocolError: If the server violates HTTP/1.1
        """
        while True:
            try:
                event = self._h11_connection.next_event()
            except h11.RemoteProtocolError as e:
                raise ProtocolError(str(e), cause=e)

            if event is not h11.NEED_DATA:
                return event

            self._set_deadline(deadline)
            data = self._stream.read(self.READ_CHUNK_SIZE)
            if not data and self._cycle_bytes_received == 0:
                raise ConnectionError("Server closed connection without sending a response")

            if data and self._cycle_bytes_received == 0:
                self.first_byte_at = time.monotonic()
            self._cycle_bytes_received += len(data)
            self._bytes_received += len(data)
            # An empty read tells h11 the peer closed its side
            self._h11_connection.receive_data(data)

    def _receive_head(self, deadline: Optional[float]) -> Tuple[int, List[Tuple[str, str]]]:
        """
        Read the status line and headers, skipping 1xx responses.

        Returns:
            Status code and (name, value) pairs in wire order
        """
        while True:
            event = self._next_event(deadline)

            if isinstance(event, h11.InformationalResponse):
                continue

            if isinstance(event, h11.Response):
                raw_headers = [
                    (name.decode("latin-1"), value.decode("latin-1"))
                    for name, value in event.headers.raw_items()
                ]
                return event.status_code, raw_headers

            if isinstance(event, h11.ConnectionClosed):
                raise ProtocolError("Connection closed by server")

    def _receive_body(self, deadline: Optional[float]) -> bytes:
        """
        Read the whole response body.

        Returns:
            The body, empty when the response carries none (HEAD, 204, 304)
        """
        chunks: List[bytes] = []
        while True:
            event = self._next_event(deadline)

            if isinstance(event, h11.Data):
                chunks.append(bytes(event.data))
                continue

            if isinstance(event, h11.EndOfMessage):
                return b"".join(chunks)

            if isinstance(event, h11.ConnectionClosed):
                raise ProtocolError("Connection closed before end of body")

    def _acquire_connection(self) -> None:
        """
        Acquire connection for use.

        Raises:
            ConnectionError: If connection is not available
        """
        if self._state == ConnectionState.CLOSED:
            raise ConnectionError("Connection is closed")

        if self._state == ConnectionState.ACTIVE:
            raise ConnectionError("Connection is busy")

        self._state = ConnectionState.ACTIVE
        self._cycle_bytes_received = 0
        self.first_byte_at = None

    def _release_connection(self) -> None:
        """
        Release connection after use.
        """
        if self._state != ConnectionState.ACTIVE:
            return

        if self._can_reuse_connection():
            self._h11_connection.start_next_cycle()
            self._state = ConnectionState.IDLE
            self._idle_since = time.monotonic()
        else:
            self.close()

    def _can_reuse_connection(self) -> bool:
        """
        Check if connection can be reused for keep-alive.

        Returns:
            True if connection can be reused
        """
        if self._request_count >= self._max_requests:
            return False

        # Bytes past the end of the response mean the framing is off
        trailing, _ = self._h11_connection.trailing_data
        if trailing:
            logger.warning(f"Discarding connection with {len(trailing)} unexpected bytes")
            return False

        return (
            self._h11_connection.our_state is h11.DONE
            and self._h11_connection.their_state is h11.DONE
        )

    def close(self) -> None:
        """
        Close the connection and cleanup resources.
        """
        if self._state != ConnectionState.CLOSED:
            self._state = ConnectionState.CLOSED
            self._stream.close()
            logger.debug(f"Connection closed after {self._request_count} requests")

    @property
    def stream(self) -> NetworkStream:
        """The underlying network stream."""
        return self._stream

    @property
    def response_started(self) -> bool:
        """True once any byte of the current response arrived."""
        return self._cycle_bytes_received > 0

    @property
    def is_closed(self) -> bool:
        """Check if connection is closed."""
        return self._state == ConnectionState.CLOSED or self._stream.is_closed

    @property
    def is_idle(self) -> bool:
        """Check if connection is idle and available for reuse."""
        return self._state == ConnectionState.IDLE and not self._stream.is_closed

    def has_expired(self, timeout: Optional[float] = None) -> bool:
        """
        Check if idle connection has expired.

        Args:
            timeout: Idle timeout in seconds (uses keep_alive_timeout if None)

        Returns:
            True if connection has expired
        """
        if self._state != ConnectionState.IDLE or self._idle_since is None:
            return False

        check_timeout = timeout or self._keep_alive_timeout
        return (time.monotonic() - self._idle_since) > check_timeout

    @property
    def metrics(self) -> Dict[str, Any]:
        """
        Get connection metrics.

        Returns:
            Dictionary with connection metrics
        """
        return {
            "request_count": self._request_count,
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "total_request_time": self._total_request_time,
            "errors_count": self._errors_count,
            "last_request_time": self._last_request_time,
            "average_request_time": (
                self._total_request_time / self._request_count
                if self._request_count > 0 else 0.0
            ),
            "state": self._state.value,
            "idle_since": self._idle_since,
        }
