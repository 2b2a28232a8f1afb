"""
Reusable HTTP connection for restclient.

A Connection holds configuration shared by many requests (base URL,
headers, timeouts, authentication, proxy, TLS and redirect policy) and
exposes one blocking method per HTTP verb. Every call applies the
configuration as it is at that moment and returns a fresh Response.

Connections are not thread-safe; use one per thread or serialise
access with an external lock.
"""

from base64 import b64encode
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple, Union

from typing_extensions import Self

from .exceptions import ConfigurationError
from .form import FormBuilder
from .http_primitives import RequestInfo, Response
from .lifecycle import Lifecycle, get_default_lifecycle
from .network.backend import NetworkBackend
from .network.utils import ProxyURL, parse_proxy_url
from .transport import TransportEngine, TransportOptions
from .version import __version__

Body = Union[str, bytes]


class AuthScheme(Enum):
    """Supported Authorization schemes."""
    BASIC = "basic"
    BEARER = "bearer"


@dataclass(frozen=True)
class Auth:
    """Credentials sent with every request."""
    scheme: AuthScheme
    username: str
    secret: str

    def header_value(self) -> str:
        if self.scheme is AuthScheme.BASIC:
            userpass = f"{self.username}:{self.secret}".encode("utf-8")
            return "Basic " + b64encode(userpass).decode("ascii")
        return f"Bearer {self.secret}"


@dataclass(frozen=True)
class ConnectionInfo:
    """Snapshot of a Connection's configuration and its last transaction."""
    base_url: str
    headers: Dict[str, str]
    timeout: Optional[float]
    connect_timeout: Optional[float]
    follow_redirects: bool
    max_redirects: int
    no_signal: bool
    ssl_verify_peer: bool
    auth_scheme: Optional[AuthScheme]
    username: Optional[str]
    proxy: Optional[str]
    user_agent: str
    cert_path: Optional[str]
    key_path: Optional[str]
    ca_info_file_path: Optional[str]
    unix_socket_path: Optional[str]
    last_request: RequestInfo = field(default_factory=RequestInfo)


class Connection:
    """
    Configurable client issuing HTTP requests against a base URL.

    ``base_url`` is prepended verbatim to every path: no slash
    normalisation and no encoding is applied. An empty base is valid
    when callers pass full URLs.

    Example::

        with Connection("https://api.example.com") as conn:
            conn.set_timeout(5)
            conn.append_header("Accept", "application/json")
            response = conn.get("/users/42")
            if response.is_transport_error:
                ...
    """

    DEFAULT_USER_AGENT = f"restclient/{__version__}"

    def __init__(
        self,
        base_url: str,
        backend: Optional[NetworkBackend] = None,
        lifecycle: Optional[Lifecycle] = None,
    ) -> None:
        """
        Args:
            base_url: Prefix concatenated with every request path
            backend: Network backend; blocking sockets by default
            lifecycle: Source of process-wide transport state; the
                module default driven by ``init()``/``disable()`` if omitted
        """
        self._base_url = base_url
        self._headers: Dict[str, str] = {}
        self._timeout: Optional[float] = None
        self._connect_timeout: Optional[float] = None
        self._auth: Optional[Auth] = None
        self._proxy: Optional[ProxyURL] = None
        self._proxy_url: Optional[str] = None
        self._ssl_verify_peer = True
        self._follow_redirects = False
        self._max_redirects = -1
        self._no_signal = False
        self._user_agent = ""
        self._cert_path: Optional[str] = None
        self._key_path: Optional[str] = None
        self._key_password: Optional[str] = None
        self._ca_info_file_path: Optional[str] = None
        self._unix_socket_path: Optional[str] = None
        self._last_request = RequestInfo()
        self._engine = TransportEngine(
            backend=backend,
            lifecycle=lifecycle or get_default_lifecycle(),
        )

    # -- configuration -------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._base_url

    def append_header(self, key: str, value: str) -> None:
        """Set one header for every following request, replacing an equal key."""
        self._headers[key] = value

    def set_headers(self, headers: Mapping[str, str]) -> None:
        """Replace the whole header map."""
        self._headers = dict(headers)

    def get_headers(self) -> Dict[str, str]:
        """Copy of the configured header map."""
        return dict(self._headers)

    def set_timeout(self, seconds: Optional[float]) -> None:
        """
        Limit each whole transaction to ``seconds``.

        ``None`` or ``0`` removes the limit; requests may then block
        indefinitely.
        """
        self._timeout = self._check_timeout(seconds)

    def set_connect_timeout(self, seconds: Optional[float]) -> None:
        """Limit connection setup (TCP connect and TLS handshake)."""
        self._connect_timeout = self._check_timeout(seconds)

    @staticmethod
    def _check_timeout(seconds: Optional[float]) -> Optional[float]:
        if seconds is None or seconds == 0:
            return None
        if seconds < 0:
            raise ConfigurationError(f"timeout must not be negative, got {seconds}")
        return float(seconds)

    def set_auth(self, scheme: Union[AuthScheme, str], username: str, secret: str) -> None:
        """
        Send an Authorization header with every request.

        Raises:
            ConfigurationError: If ``scheme`` is not supported
        """
        try:
            scheme = AuthScheme(scheme.lower() if isinstance(scheme, str) else scheme)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported auth scheme: {scheme!r}", cause=e)
        self._auth = Auth(scheme, username, secret)

    def set_basic_auth(self, username: str, password: str) -> None:
        self.set_auth(AuthScheme.BASIC, username, password)

    def set_bearer_auth(self, token: str) -> None:
        self.set_auth(AuthScheme.BEARER, "", token)

    def clear_auth(self) -> None:
        self._auth = None

    def set_proxy(self, url: Optional[str]) -> None:
        """
        Route requests through an HTTP proxy; ``None`` or ``""`` goes direct.

        The URL is validated here rather than at request time.

        Raises:
            ConfigurationError: If the proxy URL is malformed
        """
        if not url:
            self._proxy = None
            self._proxy_url = None
            return
        try:
            self._proxy = parse_proxy_url(url)
        except ValueError as e:
            raise ConfigurationError(f"Invalid proxy URL {url!r}: {e}", cause=e)
        self._proxy_url = url

    def set_ssl_verify_peer(self, verify: bool) -> None:
        """Enable or disable server certificate and hostname checks."""
        self._ssl_verify_peer = bool(verify)

    def follow_redirects(self, follow: bool, max_redirects: int = -1) -> None:
        """
        Configure redirect handling.

        Args:
            follow: Follow 301/302/303/307/308 responses
            max_redirects: Upper bound on redirects; -1 uses the engine cap
        """
        self._follow_redirects = bool(follow)
        self._max_redirects = max_redirects

    def set_no_signal(self, no_signal: bool) -> None:
        # Kept for API parity: the socket engine never uses signals.
        self._no_signal = bool(no_signal)

    def set_user_agent(self, user_agent: str) -> None:
        """Prepend ``user_agent`` to the library's own User-Agent."""
        self._user_agent = user_agent

    def set_cert_path(self, path: Optional[str]) -> None:
        """Client certificate (PEM) presented during TLS handshakes."""
        self._cert_path = path

    def set_key_path(self, path: Optional[str]) -> None:
        self._key_path = path

    def set_key_password(self, password: Optional[str]) -> None:
        self._key_password = password

    def set_ca_info_file_path(self, path: Optional[str]) -> None:
        """CA bundle used instead of the system trust store."""
        self._ca_info_file_path = path

    def set_unix_socket_path(self, path: Optional[str]) -> None:
        """Send requests over a Unix domain socket instead of TCP."""
        self._unix_socket_path = path

    @property
    def user_agent(self) -> str:
        if self._user_agent:
            return f"{self._user_agent} {self.DEFAULT_USER_AGENT}"
        return self.DEFAULT_USER_AGENT

    def get_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            base_url=self._base_url,
            headers=dict(self._headers),
            timeout=self._timeout,
            connect_timeout=self._connect_timeout,
            follow_redirects=self._follow_redirects,
            max_redirects=self._max_redirects,
            no_signal=self._no_signal,
            ssl_verify_peer=self._ssl_verify_peer,
            auth_scheme=self._auth.scheme if self._auth else None,
            username=self._auth.username if self._auth else None,
            proxy=self._proxy_url,
            user_agent=self.user_agent,
            cert_path=self._cert_path,
            key_path=self._key_path,
            ca_info_file_path=self._ca_info_file_path,
            unix_socket_path=self._unix_socket_path,
            last_request=self._last_request,
        )

    # -- verbs -----------------------------------------------------------

    def get(self, path: str) -> Response:
        return self._perform("GET", path)

    def post(self, path: str, data: Body) -> Response:
        return self._perform("POST", path, body=data)

    def post_form(self, path: str, form: FormBuilder) -> Response:
        """
        POST ``form`` as multipart/form-data and release it.

        The Content-Type (with its boundary) is always chosen by the
        engine; a configured Content-Type header is ignored for this call.

        Raises:
            FormError: If ``form`` was already released or consumed
        """
        fields = form.consume()
        return self._perform("POST", path, form=fields)

    def put(self, path: str, data: Body) -> Response:
        return self._perform("PUT", path, body=data)

    def patch(self, path: str, data: Body) -> Response:
        return self._perform("PATCH", path, body=data)

    def delete(self, path: str) -> Response:
        return self._perform("DELETE", path)

    del_ = delete

    def head(self, path: str) -> Response:
        """HEAD request; the returned body is always empty."""
        return self._perform("HEAD", path)

    def options(self, path: str) -> Response:
        return self._perform("OPTIONS", path)

    def _perform(
        self,
        method: str,
        path: str,
        body: Optional[Body] = None,
        form=None,
    ) -> Response:
        if isinstance(body, str):
            body = body.encode("utf-8")

        response = self._engine.perform(
            method,
            self._base_url + path,
            self._request_headers(),
            body=body,
            form=form,
            options=self._transport_options(),
        )
        self._last_request = response.info
        return response

    def _request_headers(self) -> List[Tuple[str, str]]:
        headers = list(self._headers.items())
        names = {name.lower() for name in self._headers}
        if "user-agent" not in names:
            headers.append(("User-Agent", self.user_agent))
        if self._auth is not None and "authorization" not in names:
            headers.append(("Authorization", self._auth.header_value()))
        return headers

    def _transport_options(self) -> TransportOptions:
        return TransportOptions(
            timeout=self._timeout,
            connect_timeout=self._connect_timeout,
            proxy=self._proxy,
            ssl_verify_peer=self._ssl_verify_peer,
            ca_info_file_path=self._ca_info_file_path,
            cert_path=self._cert_path,
            key_path=self._key_path,
            key_password=self._key_password,
            follow_redirects=self._follow_redirects,
            max_redirects=self._max_redirects,
            unix_socket_path=self._unix_socket_path,
        )

    # -- lifetime --------------------------------------------------------

    def close(self) -> None:
        """Close pooled keep-alive sockets. The Connection stays usable."""
        self._engine.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Connection base_url={self._base_url!r}>"
