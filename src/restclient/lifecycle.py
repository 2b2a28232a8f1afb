"""
Process-wide transport lifecycle for restclient.

``start`` prepares state shared by every Connection (currently the
default verifying SSL context, which loads the system trust store once);
``stop`` drops it again.

Caller obligations: call ``start`` once before issuing requests from
several threads, and ``stop`` once after every Connection is closed and
every transaction finished. Neither call is thread-safe, and neither may
run while a transaction is in flight. Nothing here guards against misuse.
"""

import logging
import ssl
from typing import Optional

from .network.utils import create_ssl_context

logger = logging.getLogger(__name__)


class Lifecycle:
    """Explicit owner of the process-wide transport state."""

    def __init__(self) -> None:
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._started = False

    def start(self) -> int:
        """
        Prepare shared transport state.

        Returns:
            0 on success, 1 if the state could not be prepared. Calling
            ``start`` on a started lifecycle returns 0 and does nothing.
        """
        if self._started:
            return 0

        try:
            self._ssl_context = create_ssl_context()
        except (ssl.SSLError, OSError) as e:
            logger.error(f"Transport initialisation failed: {e}")
            return 1

        self._started = True
        logger.debug("Transport lifecycle started")
        return 0

    def stop(self) -> None:
        """Release shared transport state. A no-op when not started."""
        if not self._started:
            return

        self._ssl_context = None
        self._started = False
        logger.debug("Transport lifecycle stopped")

    @property
    def started(self) -> bool:
        return self._started

    @property
    def ssl_context(self) -> Optional[ssl.SSLContext]:
        """Shared default SSL context, or None when not started."""
        return self._ssl_context


_default_lifecycle = Lifecycle()


def get_default_lifecycle() -> Lifecycle:
    """The lifecycle driven by :func:`init` and :func:`disable`."""
    return _default_lifecycle


def init() -> int:
    """Global init. Call this before you start any threads."""
    return _default_lifecycle.start()


def disable() -> None:
    """Global cleanup. Call this before your program terminates."""
    _default_lifecycle.stop()
