"""
restclient - simple blocking REST client

A reusable Connection carries headers, timeouts, authentication, proxy
and TLS settings across requests; module-level functions issue one-off
requests. Transport failures are reported through the Response status
code, never raised.
"""

from .version import __version__

__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .http_primitives import Response, RequestInfo, TransportErrorCode
from .connection import Connection, ConnectionInfo, AuthScheme
from .form import FormBuilder, PlainField, FileField
from .lifecycle import Lifecycle, init, disable
from .facade import get, post, post_form, put, patch, delete, head, options
from .exceptions import (
    RestClientError,
    ConnectionError,
    ProtocolError,
    TimeoutError,
    ConfigurationError,
    FormError,
    TooManyRedirects,
)

__all__ = [
    "Response",
    "RequestInfo",
    "TransportErrorCode",
    "Connection",
    "ConnectionInfo",
    "AuthScheme",
    "FormBuilder",
    "PlainField",
    "FileField",
    "Lifecycle",
    "init",
    "disable",
    "get",
    "post",
    "post_form",
    "put",
    "patch",
    "delete",
    "head",
    "options",
    "RestClientError",
    "ConnectionError",
    "ProtocolError",
    "TimeoutError",
    "ConfigurationError",
    "FormError",
    "TooManyRedirects",
]
