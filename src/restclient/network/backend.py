"""
Network backend interface for restclient.

This module defines the NetworkBackend interface that provides
abstractions for creating network connections.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Optional
from .stream import NetworkStream


class NetworkBackend(ABC):
    """
    Interface for network backend implementations.
    
    This interface defines the contract that all network backend implementations
    must follow. It provides methods for creating TCP, Unix-socket and TLS
    connections in a blocking manner.
    """
    
    @abstractmethod
    def connect_tcp(
        self, 
        host: str, 
        port: int, 
        timeout: Optional[float] = None
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint.
        
        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            timeout: Optional timeout in seconds for the connection.
        
        Returns:
            A NetworkStream representing the TCP connection.
        
        Raises:
            OSError: If the connection fails.
            socket.timeout: If the connection times out.
        """
        pass
    
    @abstractmethod
    def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a Unix domain socket.
        
        Args:
            path: Filesystem path of the socket.
            timeout: Optional timeout in seconds for the connection.
        
        Returns:
            A NetworkStream representing the connection.
        
        Raises:
            OSError: If the connection fails.
        """
        pass
    
    @abstractmethod
    def connect_tls(
        self,
        stream: NetworkStream,
        host: str,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Upgrade a connected stream to TLS.
        
        Args:
            stream: The existing NetworkStream to upgrade.
            host: The hostname for SNI and certificate verification.
            ssl_context: Context carrying the verification policy.
            timeout: Optional timeout in seconds for the TLS handshake.
        
        Returns:
            A NetworkStream representing the TLS connection.
        
        Raises:
            ssl.SSLError: If the TLS handshake fails.
            socket.timeout: If the TLS handshake times out.
        """
        pass
