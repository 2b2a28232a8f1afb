"""
Network stream interface for restclient.

This module defines the NetworkStream interface that all network stream
implementations must follow. Streams are blocking: every call returns only
once the operation completed, failed, or hit the stream's timeout.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class NetworkStream(ABC):
    """
    Interface for blocking network streams.
    
    This interface defines the contract that all network stream implementations
    must follow. It provides methods for reading, writing, and managing
    a single network connection.
    """
    
    @abstractmethod
    def read(self, max_bytes: int = 65536) -> bytes:
        """
        Read data from the stream.
        
        Args:
            max_bytes: Maximum number of bytes to read.
        
        Returns:
            The data read from the stream, or ``b""`` once the peer
            closed its side.
        
        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
            socket.timeout: If the current timeout expires.
        """
        pass
    
    @abstractmethod
    def write(self, data: bytes) -> None:
        """
        Write all of ``data`` to the stream.
        
        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
        """
        pass
    
    @abstractmethod
    def close(self) -> None:
        """
        Close the stream and release the underlying socket.
        
        Closing an already closed stream is a no-op.
        """
        pass
    
    @abstractmethod
    def set_timeout(self, timeout: Optional[float]) -> None:
        """
        Bound every following read/write by ``timeout`` seconds.
        
        ``None`` blocks indefinitely.
        """
        pass
    
    @abstractmethod
    def get_extra_info(self, name: str) -> Optional[Any]:
        """
        Get extra information about the stream.
        
        Args:
            name: The name of the information to retrieve. Common values include:
                 - "socket": The underlying socket object
                 - "peername": The remote endpoint address
                 - "sockname": The local endpoint address
                 - "ssl_object": Whether the stream is SSL/TLS encrypted
                 - "name_lookup_time": Seconds spent resolving the host
        
        Returns:
            The requested information or None if not available.
        """
        pass
    
    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """
        Check if the stream is closed.
        
        Returns:
            True if the stream is closed, False otherwise.
        """
        pass
