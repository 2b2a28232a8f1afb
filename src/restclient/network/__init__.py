"""
Network backend components for restclient.

This module provides the low-level networking abstractions:
blocking network streams and the backends that open them.
"""

from .backend import NetworkBackend
from .stream import NetworkStream
from .sync import SyncNetworkBackend, SocketNetworkStream
from .mock import MockNetworkBackend, MockNetworkStream
from .utils import (
    ProxyURL,
    create_socket,
    create_ssl_context,
    parse_proxy_url,
    format_host_header,
    is_ipv6_address,
    set_socket_timeout,
)

__all__ = [
    "NetworkBackend", 
    "NetworkStream",
    "SyncNetworkBackend",
    "SocketNetworkStream",
    "MockNetworkBackend", 
    "MockNetworkStream",
    "ProxyURL",
    "create_socket",
    "create_ssl_context",
    "parse_proxy_url",
    "format_host_header",
    "is_ipv6_address",
    "set_socket_timeout",
]
