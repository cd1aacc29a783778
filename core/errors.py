"""
Error Buffer - last-error state shared by all image operations

Engine functions raise ImageError. The flat function surface turns those
into status codes and appends the message here, where callers can read it
immediately after the failing call.
"""

import logging
from collections import deque
from threading import RLock
from typing import Optional

from core.constants import SystemConstants

logger = logging.getLogger(__name__)


class ImageError(Exception):
    """Raised when an image operation fails"""

    def __init__(self, message: str, domain: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.domain = domain

    def __str__(self) -> str:
        if self.domain:
            return f"{self.domain}: {self.message}"
        return self.message


class ErrorBuffer:
    """Bounded buffer of error messages, newest last"""

    def __init__(self, max_entries: int = SystemConstants.ERROR_BUFFER_MAX_ENTRIES):
        """
        Initialize Error Buffer

        Args:
            max_entries: Maximum number of messages to keep
        """
        self.max_entries = max_entries
        self.entries: deque = deque(maxlen=max_entries)

        # Thread safety (RLock allows reentrant locking)
        self.lock = RLock()

    def record(self, domain: str, message: str) -> None:
        """Append one message under the given domain"""
        with self.lock:
            self.entries.append(f"{domain}: {message}")
            logger.debug(f"{domain}: {message}")

    def record_exception(self, domain: str, exc: BaseException) -> None:
        """Append an exception, keeping the domain it was raised with"""
        if isinstance(exc, ImageError) and exc.domain:
            self.record(exc.domain, exc.message)
        else:
            self.record(domain, str(exc))

    def text(self) -> str:
        """Return all buffered messages, one per line"""
        with self.lock:
            return "".join(f"{entry}\n" for entry in self.entries)

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self.entries)


_buffer = ErrorBuffer()


def error_buffer() -> str:
    """Get the accumulated error text (empty string when no error)"""
    return _buffer.text()


def error_clear() -> None:
    """Forget all buffered errors"""
    _buffer.clear()


def record(domain: str, message: str) -> None:
    _buffer.record(domain, message)


def record_exception(domain: str, exc: BaseException) -> None:
    _buffer.record_exception(domain, exc)
