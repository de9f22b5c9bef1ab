"""A readers-writer lock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class RWMutex:
    """Many readers or one writer at a time."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def rdlock(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer)
            self._readers += 1

    def wrlock(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True

    def unlock(self) -> None:
        """Release a held write lock, or one read lock."""
        with self._cond:
            if self._writer:
                self._writer = False
            elif self._readers > 0:
                self._readers -= 1
            else:
                raise RuntimeError("unlock of an unlocked RWMutex")
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator["RWMutex"]:
        self.rdlock()
        try:
            yield self
        finally:
            self.unlock()

    @contextmanager
    def write_locked(self) -> Iterator["RWMutex"]:
        self.wrlock()
        try:
            yield self
        finally:
            self.unlock()