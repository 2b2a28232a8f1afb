"""
Custom exceptions for restclient.

This module defines the exception hierarchy used inside the
transport engine. Transport failures never leave the engine as
exceptions: they are converted into Responses carrying a
negative status code. Only caller mistakes (bad configuration,
reusing a consumed form) are raised to application code.
"""

from typing import Optional


class RestClientError(Exception):
    """Base exception for all restclient errors."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConnectionError(RestClientError):
    """Raised when a network connection cannot be established or breaks."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Connection error: {message}", cause)


class ProtocolError(RestClientError):
    """Raised when the peer violates HTTP/1.1 framing."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Protocol error: {message}", cause)


class TimeoutError(RestClientError):
    """Raised when a transaction exceeds its deadline."""
    
    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        if timeout is not None:
            message = f"{message} (timeout: {timeout}s)"
        super().__init__(f"Timeout error: {message}")


class ConfigurationError(RestClientError):
    """Raised synchronously by Connection setters given invalid values."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Configuration error: {message}", cause)


class FormError(RestClientError):
    """Raised when a FormBuilder is used after it was released."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Form error: {message}", cause)


class TooManyRedirects(RestClientError):
    """Raised when a redirect chain exceeds the configured limit."""
    
    def __init__(self, limit: int) -> None:
        super().__init__(f"Maximum ({limit}) redirects followed")
        self.limit = limit
