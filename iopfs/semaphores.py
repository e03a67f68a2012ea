"""A fixed-size table of counting semaphores addressed by integer id."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class SemaphoreError(Exception):
    """Raised for a full table or an invalid or freed semaphore id."""


class SemaphoreTable:
    """Semaphores created with an initial count of one."""

    def __init__(self, capacity: int = 100) -> None:
        self.capacity = capacity
        self._slots: list[threading.Semaphore | None] = [None] * capacity
        self._lock = threading.Lock()

    def create(self) -> int:
        """Allocate the lowest free id and return it."""
        with self._lock:
            for semid, slot in enumerate(self._slots):
                if slot is None:
                    self._slots[semid] = threading.Semaphore(1)
                    return semid
        raise SemaphoreError("too many semaphores allocated")

    def _get(self, semid: int, action: str) -> threading.Semaphore:
        if not 0 <= semid < self.capacity:
            raise SemaphoreError(f"{action}: invalid index: {semid}")
        sem = self._slots[semid]
        if sem is None:
            raise SemaphoreError(f"{action}: already freed: {semid}")
        return sem

    def delete(self, semid: int) -> None:
        with self._lock:
            self._get(semid, "delete")
            self._slots[semid] = None

    def wait(self, semid: int) -> None:
        self._get(semid, "wait").acquire()

    def signal(self, semid: int) -> None:
        self._get(semid, "signal").release()

    @contextmanager
    def hold(self, semid: int) -> Iterator[None]:
        """Wait on the semaphore for the duration of the block."""
        self.wait(semid)
        try:
            yield
        finally:
            self.signal(semid)