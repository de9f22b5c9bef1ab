"""Named worker threads that know which thread object they run in."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from .utils import get_thread_id

DEFAULT_NAME = "UNKNOW"

_current = threading.local()


class Thread:
    """A thread that starts running ``cb`` as soon as it is created."""

    def __init__(self, cb: Callable[[], None], name: str = DEFAULT_NAME) -> None:
        self.name = name or DEFAULT_NAME
        self._cb: Optional[Callable[[], None]] = cb
        self._id: Optional[int] = None
        self._started = threading.Event()
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        _current.thread = self
        _current.name = self.name
        self._id = get_thread_id()
        self._started.set()
        cb, self._cb = self._cb, None
        try:
            if cb is not None:
                cb()
        except BaseException as exc:  # handed to join()
            self._error = exc

    @property
    def id(self) -> int:
        """The operating-system id of the running thread."""
        self._started.wait()
        assert self._id is not None
        return self._id

    def join(self) -> None:
        """Wait for the thread to finish; re-raise anything its callback raised."""
        self._thread.join()
        error, self._error = self._error, None
        if error is not None:
            raise error

    @staticmethod
    def get_this() -> Optional["Thread"]:
        """The Thread object running the caller, or None outside one."""
        return getattr(_current, "thread", None)

    @staticmethod
    def get_name() -> str:
        """The name of the calling thread."""
        return getattr(_current, "name", DEFAULT_NAME)

    @staticmethod
    def set_name(name: str) -> None:
        """Rename the calling thread; an empty name is ignored."""
        if not name:
            return
        this = Thread.get_this()
        if this is not None:
            this.name = name
        _current.name = name