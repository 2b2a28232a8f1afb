"""
Transport engine for restclient.

The engine performs one complete HTTP transaction per ``perform`` call:
it opens (or reuses) a connection, speaks HTTP/1.1 through
HTTP11Connection, follows redirects when asked to, and turns every
transport failure into a Response carrying a TransportErrorCode.

Keep-alive is opportunistic: one idle connection per origin is kept
and reused by the next transaction to the same origin.
"""

import dataclasses
import logging
import socket
import ssl
import time
from base64 import b64encode
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from .exceptions import (
    ConnectionError,
    ProtocolError,
    RestClientError,
    TimeoutError,
    TooManyRedirects,
)
from .form import FormField, encode_multipart
from .http11 import HTTP11Connection
from .http_primitives import (
    Request,
    RequestInfo,
    Response,
    TransportErrorCode,
    URLComponents,
)
from .lifecycle import Lifecycle
from .network.backend import NetworkBackend
from .network.sync import SyncNetworkBackend
from .network.utils import ProxyURL, create_ssl_context, format_host_header

logger = logging.getLogger(__name__)

REDIRECT_CODES = (301, 302, 303, 307, 308)
# Requests that become GET (without a body) when redirected
METHOD_CHANGING_REDIRECTS = (301, 302, 303)
# Methods whose bare POST-style body gets a default Content-Type
FORM_URLENCODED_DEFAULT = (b"POST", b"PATCH")


@dataclass(frozen=True)
class TransportOptions:
    """Per-transaction settings taken from a Connection."""

    timeout: Optional[float] = None
    connect_timeout: Optional[float] = None
    proxy: Optional[ProxyURL] = None
    ssl_verify_peer: bool = True
    ca_info_file_path: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    key_password: Optional[str] = None
    follow_redirects: bool = False
    max_redirects: int = -1
    unix_socket_path: Optional[str] = None

    @property
    def uses_default_tls(self) -> bool:
        return (
            self.ssl_verify_peer
            and not self.ca_info_file_path
            and not self.cert_path
        )


PoolKey = Tuple[bytes, bytes, int, Optional[ProxyURL], Optional[str], Tuple]


class TransportEngine:
    """
    Blocking HTTP/1.1 transport.

    Not safe for concurrent use; each Connection owns one engine.
    """

    DEFAULT_MAX_REDIRECTS = 50

    def __init__(
        self,
        backend: Optional[NetworkBackend] = None,
        lifecycle: Optional[Lifecycle] = None,
    ) -> None:
        """
        Args:
            backend: Opens network streams; blocking sockets by default
            lifecycle: Source of the shared default SSL context
        """
        self._backend = backend or SyncNetworkBackend()
        self._lifecycle = lifecycle
        self._idle: Dict[PoolKey, HTTP11Connection] = {}
        self._ssl_contexts: Dict[Tuple, ssl.SSLContext] = {}

    def perform(
        self,
        method: str,
        url: str,
        headers: Sequence[Tuple[str, str]],
        body: Optional[bytes] = None,
        form: Optional[Sequence[FormField]] = None,
        options: Optional[TransportOptions] = None,
    ) -> Response:
        """
        Execute one transaction and return its Response.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers in order
            body: Payload sent verbatim; None sends no body at all
            form: Fields encoded as multipart/form-data, replacing ``body``
                and any configured Content-Type
            options: Timeouts, proxy, TLS and redirect policy

        Returns:
            The final Response. Transport failures yield a Response whose
            code is a negative TransportErrorCode and whose body holds a
            diagnostic message; nothing is raised.
        """
        options = options or TransportOptions()
        info = RequestInfo(effective_url=url)
        start = time.monotonic()
        deadline = start + options.timeout if options.timeout else None
        headers = list(headers)

        if form is not None:
            try:
                content_type, body = encode_multipart(form)
            except OSError as e:
                logger.error(f"{method} {url} failed: cannot read form file: {e}")
                info.total_time = time.monotonic() - start
                return Response.failure(
                    TransportErrorCode.RESOURCE_ERROR, f"Form file error: {e}", info
                )
            headers = [(k, v) for k, v in headers if k.lower() != "content-type"]
            headers.append(("Content-Type", content_type))

        try:
            request = self._build_request(method, url, headers, body)
            response = self._perform_following_redirects(request, options, deadline, info, start)
        except (RestClientError, OSError, ValueError) as e:
            code = self._failure_code(e)
            info.total_time = time.monotonic() - start
            logger.error(f"{method} {url} failed ({code.name}): {e}")
            return Response.failure(code, self._failure_message(code, e), info)

        info.total_time = time.monotonic() - start
        logger.debug(f"{method} {url} -> {response.code} ({info.total_time:.3f}s)")
        return dataclasses.replace(response, info=info)

    def close(self) -> None:
        """Close every idle keep-alive connection."""
        for connection in self._idle.values():
            connection.close()
        self._idle.clear()

    def _build_request(
        self,
        method: str,
        url: str,
        headers: List[Tuple[str, str]],
        body: Optional[bytes],
    ) -> Request:
        components = URLComponents.from_url(url)
        method_bytes = method.upper().encode()
        names = {name.lower() for name, _ in headers}

        wire_headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in headers
            if name.lower() not in ("host", "content-length", "transfer-encoding")
        ]
        wire_headers.insert(0, (b"Host", self._host_header(components)))
        if "accept" not in names:
            wire_headers.append((b"Accept", b"*/*"))
        if body is not None:
            if "content-type" not in names and method_bytes in FORM_URLENCODED_DEFAULT:
                wire_headers.append((b"Content-Type", b"application/x-www-form-urlencoded"))
            wire_headers.append((b"Content-Length", str(len(body)).encode()))

        return Request.create(method_bytes, components, wire_headers, body)

    @staticmethod
    def _host_header(components: URLComponents) -> bytes:
        return format_host_header(
            components.host.decode(), components.port, components.scheme.decode()
        ).encode()

    def _perform_following_redirects(
        self,
        request: Request,
        options: TransportOptions,
        deadline: Optional[float],
        info: RequestInfo,
        start: float,
    ) -> Response:
        limit = options.max_redirects if options.max_redirects >= 0 else self.DEFAULT_MAX_REDIRECTS
        while True:
            response = self._send(request, options, deadline, info, start)
            location = response.get_header("Location")
            if (
                not options.follow_redirects
                or response.code not in REDIRECT_CODES
                or not location
            ):
                return response

            if info.redirect_count >= limit:
                raise TooManyRedirects(limit)

            request = self._redirect_request(request, response.code, location)
            info.redirect_count += 1
            info.redirect_time = time.monotonic() - start
            info.effective_url = request.components.geturl()
            logger.debug(f"Redirect {response.code} -> {info.effective_url}")

    def _redirect_request(self, request: Request, code: int, location: str) -> Request:
        target = URLComponents.from_url(urljoin(request.components.geturl(), location))
        redirected = request.with_url(target)

        if target.host != request.host:
            redirected = redirected.without_header("Authorization")

        if code in METHOD_CHANGING_REDIRECTS and request.method not in (b"GET", b"HEAD"):
            redirected = (
                redirected.with_method(b"GET")
                .with_body(None)
                .without_header("Content-Length")
                .without_header("Content-Type")
            )

        headers = [(b"Host", self._host_header(target))] + [
            (k, v) for k, v in redirected.headers if k.lower() != b"host"
        ]
        return redirected.with_headers(headers)

    def _send(
        self,
        request: Request,
        options: TransportOptions,
        deadline: Optional[float],
        info: RequestInfo,
        start: float,
    ) -> Response:
        """Send one request, replacing a stale keep-alive connection once."""
        key = self._pool_key(request, options)
        wire_request = self._wire_request(request, options)

        connection, reused = self._acquire(key, request, options, deadline, info, start)
        info.pre_transfer_time = time.monotonic() - start
        try:
            response = connection.handle_request(wire_request, deadline)
        except (ConnectionError, OSError) as e:
            if not reused or connection.response_started or isinstance(e, socket.timeout):
                raise
            logger.warning(f"Reused connection failed ({e!r}); reconnecting")
            connection = self._open_connection(request, options, deadline, info, start)
            info.pre_transfer_time = time.monotonic() - start
            response = connection.handle_request(wire_request, deadline)

        if connection.first_byte_at is not None:
            info.start_transfer_time = connection.first_byte_at - start
        if connection.is_idle:
            self._idle[key] = connection
        return response

    def _wire_request(self, request: Request, options: TransportOptions) -> Request:
        """Adapt the request to the route it takes (absolute-form through a proxy)."""
        if options.proxy is None or options.unix_socket_path or request.scheme == b"https":
            return request

        absolute = request.components.geturl().encode()
        wire = Request(
            method=request.method,
            url=(request.scheme, request.host, request.port, absolute),
            headers=request.headers,
            body=request.body,
        )
        credentials = self._proxy_authorization(options.proxy)
        if credentials is not None:
            wire = wire.with_headers(wire.headers + [(b"Proxy-Authorization", credentials)])
        return wire

    @staticmethod
    def _proxy_authorization(proxy: ProxyURL) -> Optional[bytes]:
        if proxy.username is None:
            return None
        userpass = f"{proxy.username}:{proxy.password or ''}".encode("utf-8")
        return b"Basic " + b64encode(userpass)

    def _pool_key(self, request: Request, options: TransportOptions) -> PoolKey:
        tls = (
            options.ssl_verify_peer,
            options.ca_info_file_path,
            options.cert_path,
            options.key_path,
        )
        return (request.scheme, request.host, request.port, options.proxy, options.unix_socket_path, tls)

    def _acquire(
        self,
        key: PoolKey,
        request: Request,
        options: TransportOptions,
        deadline: Optional[float],
        info: RequestInfo,
        start: float,
    ) -> Tuple[HTTP11Connection, bool]:
        self._prune_idle()
        connection = self._idle.pop(key, None)
        if connection is not None:
            if connection.is_idle and not connection.has_expired():
                return connection, True
            connection.close()
        return self._open_connection(request, options, deadline, info, start), False

    def _prune_idle(self) -> None:
        """Close idle connections that expired or were closed by the server."""
        for key, connection in list(self._idle.items()):
            if connection.is_closed or connection.has_expired():
                connection.close()
                del self._idle[key]

    def _open_connection(
        self,
        request: Request,
        options: TransportOptions,
        deadline: Optional[float],
        info: RequestInfo,
        start: float,
    ) -> HTTP11Connection:
        host = request.host.decode()
        connect_deadline = deadline
        if options.connect_timeout:
            connect_deadline = min(
                filter(None, (deadline, time.monotonic() + options.connect_timeout))
            )

        opened_at = time.monotonic()
        if options.unix_socket_path:
            stream = self._backend.connect_unix(
                options.unix_socket_path, self._remaining(connect_deadline)
            )
        elif options.proxy is not None:
            stream = self._backend.connect_tcp(
                options.proxy.host, options.proxy.port, self._remaining(connect_deadline)
            )
        else:
            stream = self._backend.connect_tcp(host, request.port, self._remaining(connect_deadline))

        lookup = stream.get_extra_info("name_lookup_time") or 0.0
        info.name_lookup_time = (opened_at - start) + lookup
        info.connect_time = time.monotonic() - start

        if request.scheme == b"https":
            try:
                if options.proxy is not None and not options.unix_socket_path:
                    self._open_tunnel(stream, request, options.proxy, connect_deadline)
                stream = self._backend.connect_tls(
                    stream, host, self._ssl_context(options), self._remaining(connect_deadline)
                )
            except Exception:
                stream.close()
                raise
            info.app_connect_time = time.monotonic() - start

        logger.debug(f"Opened connection to {request.components.origin()}")
        return HTTP11Connection(stream)

    def _open_tunnel(
        self,
        stream,
        request: Request,
        proxy: ProxyURL,
        deadline: Optional[float],
    ) -> None:
        authority = format_host_header(request.host.decode(), request.port, "").encode()
        headers = [(b"Host", authority)]
        credentials = self._proxy_authorization(proxy)
        if credentials is not None:
            headers.append((b"Proxy-Authorization", credentials))
        HTTP11Connection(stream).open_tunnel(authority, headers, deadline)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("Connect deadline exceeded")
        return remaining

    def _ssl_context(self, options: TransportOptions) -> ssl.SSLContext:
        if options.uses_default_tls and self._lifecycle is not None:
            shared = self._lifecycle.ssl_context
            if shared is not None:
                return shared

        key = (
            options.ssl_verify_peer,
            options.ca_info_file_path,
            options.cert_path,
            options.key_path,
            options.key_password,
        )
        if key not in self._ssl_contexts:
            self._ssl_contexts[key] = create_ssl_context(
                verify_peer=options.ssl_verify_peer,
                ca_file=options.ca_info_file_path,
                cert_file=options.cert_path,
                key_file=options.key_path,
                key_password=options.key_password,
            )
        return self._ssl_contexts[key]

    @staticmethod
    def _failure_code(error: Exception) -> TransportErrorCode:
        if isinstance(error, (TimeoutError, socket.timeout)):
            return TransportErrorCode.TIMEOUT
        if isinstance(error, ssl.SSLError):
            return TransportErrorCode.SSL_ERROR
        if isinstance(error, ProtocolError):
            return TransportErrorCode.PROTOCOL_ERROR
        if isinstance(error, TooManyRedirects):
            return TransportErrorCode.TOO_MANY_REDIRECTS
        return TransportErrorCode.FAILED

    @staticmethod
    def _failure_message(code: TransportErrorCode, error: Exception) -> str:
        if code == TransportErrorCode.TIMEOUT:
            return "Operation Timeout."
        return f"Failed to query: {error}"
