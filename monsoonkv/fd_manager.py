"""Per-descriptor state for the fiber runtime: socket kind, blocking mode,
closed flag and read/write timeouts."""

from __future__ import annotations

import functools
import os
import socket
import stat
from typing import Dict, Optional

from .mutex import RWMutex

RECV_TIMEOUT = socket.SO_RCVTIMEO
SEND_TIMEOUT = socket.SO_SNDTIMEO


class FdCtx:
    """What is known about one file descriptor.

    Sockets are switched to non-blocking mode at the system level when the
    context is made; whether the user asked for non-blocking is kept apart.
    Timeouts are in milliseconds, None meaning no timeout.
    """

    def __init__(self, fd: int) -> None:
        self.fd = fd
        self.is_init = False
        self.is_socket = False
        self.sys_nonblock = False
        self.user_nonblock = False
        self.is_closed = False
        self.recv_timeout: Optional[int] = None
        self.send_timeout: Optional[int] = None
        self._init()

    def _init(self) -> bool:
        if self.is_init:
            return True
        try:
            mode = os.fstat(self.fd).st_mode
        except OSError:
            self.is_init = False
            self.is_socket = False
        else:
            self.is_init = True
            self.is_socket = stat.S_ISSOCK(mode)

        if self.is_socket:
            if os.get_blocking(self.fd):
                os.set_blocking(self.fd, False)
            self.sys_nonblock = True
        else:
            self.sys_nonblock = False
        self.user_nonblock = False
        self.is_closed = False
        return self.is_init

    def set_timeout(self, kind: int, value: Optional[int]) -> None:
        """Set the receive timeout for SO_RCVTIMEO, otherwise the send timeout."""
        if kind == RECV_TIMEOUT:
            self.recv_timeout = value
        else:
            self.send_timeout = value

    def get_timeout(self, kind: int) -> Optional[int]:
        return self.recv_timeout if kind == RECV_TIMEOUT else self.send_timeout


class FdManager:
    """Registry of FdCtx objects keyed by descriptor number."""

    def __init__(self) -> None:
        self._mutex = RWMutex()
        self._contexts: Dict[int, FdCtx] = {}

    def get(self, fd: int, auto_create: bool = False) -> Optional[FdCtx]:
        """Return the context for ``fd``, making one if ``auto_create`` is set."""
        if fd < 0:
            return None
        with self._mutex.read_locked():
            ctx = self._contexts.get(fd)
        if ctx is not None or not auto_create:
            return ctx
        with self._mutex.write_locked():
            ctx = self._contexts.get(fd)
            if ctx is None:
                ctx = FdCtx(fd)
                self._contexts[fd] = ctx
            return ctx

    def delete(self, fd: int) -> None:
        with self._mutex.write_locked():
            self._contexts.pop(fd, None)


@functools.lru_cache(maxsize=None)
def fd_manager() -> FdManager:
    """The process-wide FdManager."""
    return FdManager()