"""
HTTP primitives for restclient.

This module defines the core data structures for HTTP requests and responses.
Requests and responses are immutable; a Response is a plain value created
fresh for every transaction and never shared with the Connection that
produced it.
"""

from enum import IntEnum
from typing import (
    Dict,
    List,
    Optional,
    Tuple,
    Union,
    NamedTuple,
)
from dataclasses import dataclass, field
from urllib.parse import urlsplit


# Type aliases for better readability
Headers = List[Tuple[bytes, bytes]]
URL = Tuple[bytes, bytes, int, bytes]  # (scheme, host, port, target)
StatusCode = int

SUPPORTED_SCHEMES = (b"http", b"https")


class TransportErrorCode(IntEnum):
    """
    Status codes reported when a transaction could not complete.
    
    All values lie outside the 100-599 HTTP range so callers can tell
    "the server answered with an error" from "nothing was answered".
    """
    FAILED = -1
    TIMEOUT = -2
    SSL_ERROR = -3
    RESOURCE_ERROR = -4
    PROTOCOL_ERROR = -5
    TOO_MANY_REDIRECTS = -6


class URLComponents(NamedTuple):
    """Immutable representation of URL components."""
    scheme: bytes
    host: bytes
    port: int
    target: bytes
    
    @classmethod
    def from_url(cls, url: str) -> "URLComponents":
        """
        Create URLComponents from a URL string.
        
        The fragment is dropped since it is never sent on the wire.
        
        Raises:
            ValueError: If the URL has no host, an unsupported scheme
                or an invalid port.
        """
        if "://" not in url:
            url = "http://" + url
        parsed = urlsplit(url)
        scheme = parsed.scheme.lower().encode()
        if scheme not in SUPPORTED_SCHEMES:
            raise ValueError(f"Unsupported URL scheme: {parsed.scheme!r}")
        
        hostname = parsed.hostname or ""
        if not hostname:
            raise ValueError(f"No hostname found in URL: {url!r}")
        host = hostname.encode("ascii") if hostname.isascii() else hostname.encode("idna")
        
        # Accessing .port raises ValueError for out-of-range values
        port = parsed.port or (443 if scheme == b"https" else 80)
        
        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query
        
        return cls(scheme=scheme, host=host, port=port, target=target.encode())
    
    def to_tuple(self) -> URL:
        """Convert to the internal URL tuple format."""
        return (self.scheme, self.host, self.port, self.target)
    
    def origin(self) -> str:
        """Return ``scheme://host[:port]`` with the default port omitted."""
        host = self.host.decode()
        if ":" in host:
            host = f"[{host}]"
        default = 443 if self.scheme == b"https" else 80
        if self.port != default:
            host = f"{host}:{self.port}"
        return f"{self.scheme.decode()}://{host}"
    
    def geturl(self) -> str:
        """Rebuild the absolute URL."""
        return self.origin() + self.target.decode()


@dataclass(frozen=True)
class Request:
    """
    Immutable HTTP request representation.
    
    The body is fully materialised; there is no streaming upload.
    """
    
    method: bytes
    url: URL
    headers: Headers = field(default_factory=list)
    body: Optional[bytes] = None
    
    def __post_init__(self) -> None:
        """Validate request data after initialization."""
        if not isinstance(self.method, bytes):
            raise ValueError("method must be bytes")
        
        if not isinstance(self.url, tuple) or len(self.url) != 4:
            raise ValueError("url must be a 4-tuple (scheme, host, port, target)")
        
        if not isinstance(self.headers, list):
            raise ValueError("headers must be a list")
        
        for name, value in self.headers:
            if not isinstance(name, bytes) or not isinstance(value, bytes):
                raise ValueError("header names and values must be bytes")
        
        if self.body is not None and not isinstance(self.body, bytes):
            raise ValueError("body must be bytes or None")
    
    @classmethod
    def create(
        cls,
        method: Union[str, bytes],
        url: Union[str, URL, URLComponents],
        headers: Optional[Headers] = None,
        body: Optional[bytes] = None,
    ) -> "Request":
        """
        Create a Request with proper type conversion.
        
        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL string, tuple, or URLComponents
            headers: Optional list of (name, value) header tuples
            body: Optional request payload
            
        Returns:
            New Request instance
        """
        if isinstance(method, str):
            method = method.encode()
        
        if isinstance(url, str):
            url = URLComponents.from_url(url).to_tuple()
        elif isinstance(url, URLComponents):
            url = url.to_tuple()
        elif not isinstance(url, tuple):
            raise ValueError("url must be string, URLComponents, or URL tuple")
        
        return cls(method=method, url=url, headers=list(headers or []), body=body)
    
    def with_method(self, method: Union[str, bytes]) -> "Request":
        """Create a new request with a different method."""
        if isinstance(method, str):
            method = method.encode()
        return Request(method=method, url=self.url, headers=self.headers, body=self.body)
    
    def with_url(self, url: Union[str, URL, URLComponents]) -> "Request":
        """Create a new request with a different URL."""
        if isinstance(url, str):
            url = URLComponents.from_url(url).to_tuple()
        elif isinstance(url, URLComponents):
            url = url.to_tuple()
        return Request(method=self.method, url=url, headers=self.headers, body=self.body)
    
    def with_headers(self, headers: Headers) -> "Request":
        """Create a new request with different headers."""
        return Request(method=self.method, url=self.url, headers=headers, body=self.body)
    
    def with_body(self, body: Optional[bytes]) -> "Request":
        """Create a new request with a different body."""
        return Request(method=self.method, url=self.url, headers=self.headers, body=body)
    
    def get_header(self, name: Union[str, bytes]) -> Optional[bytes]:
        """Get a header value by name (case-insensitive)."""
        if isinstance(name, str):
            name = name.encode()
        
        name_lower = name.lower()
        for header_name, header_value in self.headers:
            if header_name.lower() == name_lower:
                return header_value
        return None
    
    def without_header(self, name: Union[str, bytes]) -> "Request":
        """Create a new request with every header called ``name`` removed."""
        if isinstance(name, str):
            name = name.encode()
        name_lower = name.lower()
        headers = [(k, v) for k, v in self.headers if k.lower() != name_lower]
        return self.with_headers(headers)
    
    @property
    def scheme(self) -> bytes:
        """Get the URL scheme."""
        return self.url[0]
    
    @property
    def host(self) -> bytes:
        """Get the URL host."""
        return self.url[1]
    
    @property
    def port(self) -> int:
        """Get the URL port."""
        return self.url[2]
    
    @property
    def target(self) -> bytes:
        """Get the request target (path and query)."""
        return self.url[3]
    
    @property
    def components(self) -> URLComponents:
        """Get the URL as URLComponents."""
        return URLComponents(*self.url)


@dataclass
class RequestInfo:
    """
    Timing and redirect details of one transaction.
    
    All times are seconds since the start of the transaction. Phases
    that did not happen (for example DNS on a reused connection)
    stay at 0.0.
    """
    
    total_time: float = 0.0
    name_lookup_time: float = 0.0
    connect_time: float = 0.0
    app_connect_time: float = 0.0
    pre_transfer_time: float = 0.0
    start_transfer_time: float = 0.0
    redirect_time: float = 0.0
    redirect_count: int = 0
    effective_url: str = ""


@dataclass(frozen=True)
class Response:
    """
    Result of one completed (or failed) HTTP transaction.
    
    ``headers`` maps each header name, exactly as received, to the
    value of its last occurrence; the mapping keeps the position of
    the first occurrence. ``raw_headers`` keeps every header line in
    wire order, so repeated fields such as ``Set-Cookie`` are not lost.
    """
    
    code: StatusCode
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    raw_headers: List[Tuple[str, str]] = field(default_factory=list)
    info: RequestInfo = field(default_factory=RequestInfo)
    
    def __post_init__(self) -> None:
        """Validate response data after initialization."""
        if not isinstance(self.code, int):
            raise ValueError("code must be int")
        
        if not isinstance(self.body, bytes):
            raise ValueError("body must be bytes")
        
        if not isinstance(self.headers, dict):
            raise ValueError("headers must be a dict")
    
    @classmethod
    def create(
        cls,
        code: StatusCode,
        raw_headers: Optional[List[Tuple[str, str]]] = None,
        body: bytes = b"",
        info: Optional[RequestInfo] = None,
    ) -> "Response":
        """
        Create a Response from the header lines in wire order.
        
        Args:
            code: HTTP status code
            raw_headers: Header (name, value) pairs as received
            body: Response payload
            info: Timing details
            
        Returns:
            New Response instance
        """
        raw_headers = list(raw_headers or [])
        headers: Dict[str, str] = {}
        for name, value in raw_headers:
            headers[name] = value
        
        return cls(
            code=int(code),
            body=body,
            headers=headers,
            raw_headers=raw_headers,
            info=info or RequestInfo(),
        )
    
    @classmethod
    def failure(
        cls,
        code: TransportErrorCode,
        message: str,
        info: Optional[RequestInfo] = None,
    ) -> "Response":
        """Create the Response returned when the transport could not complete."""
        return cls(code=int(code), body=message.encode(), info=info or RequestInfo())
    
    @property
    def is_transport_error(self) -> bool:
        """True when ``code`` is a TransportErrorCode rather than an HTTP status."""
        return not 100 <= self.code <= 599
    
    @property
    def text(self) -> str:
        """Body decoded as UTF-8, with undecodable bytes replaced."""
        return self.body.decode("utf-8", errors="replace")
    
    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive, last occurrence)."""
        name_lower = name.lower()
        found = None
        for header_name, header_value in self.raw_headers:
            if header_name.lower() == name_lower:
                found = header_value
        return found
    
    def get_all(self, name: str) -> List[str]:
        """Get every value of a repeated header (case-insensitive)."""
        name_lower = name.lower()
        return [v for k, v in self.raw_headers if k.lower() == name_lower]
    
    def has_header(self, name: str) -> bool:
        """Check if a header exists (case-insensitive)."""
        return self.get_header(name) is not None
    
    def __str__(self) -> str:
        return f"<Response [{self.code}] headers={len(self.headers)} body={len(self.body)} bytes>"
