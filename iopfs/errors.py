"""Errors raised by the I/O manager and its drivers."""

from __future__ import annotations

import os


class IopError(Exception):
    """A failed I/O operation, carrying a positive errno value."""

    def __init__(self, errno: int, message: str | None = None) -> None:
        if errno < 0:
            errno = -errno
        if not message:
            message = os.strerror(errno)
        super().__init__(errno, message)
        self.errno = errno
        self.message = message

    def code(self) -> int:
        """Return the negative status code that reports this error."""
        return -self.errno

    def __str__(self) -> str:
        return f"[Errno {self.errno}] {self.message}"