"""Cooperative fibers: callbacks that can pause with ``yield_`` and be
continued with ``resume``.

Each fiber runs on its own backing thread, but control is handed over
explicitly, so only one of a fiber and the code that resumed it runs at a time.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
import weakref
from typing import Callable, Optional

from .utils import cond_panic, get_thread_id, is_hook_enable, set_hook_enable

logger = logging.getLogger(__name__)

DEFAULT_STACK_SIZE = 128 * 1024

_local = threading.local()
_ids = itertools.count()
_live: "weakref.WeakSet[Fiber]" = weakref.WeakSet()
_live_lock = threading.Lock()


class FiberState(enum.Enum):
    READY = "ready"
    RUNNING = "running"
    TERM = "term"


class Fiber:
    """A unit of work that runs ``cb`` and may pause part way through."""

    def __init__(
        self,
        cb: Callable[[], None],
        stack_size: int = 0,
        run_in_scheduler: bool = True,
    ) -> None:
        self.id = next(_ids)
        self.cb: Optional[Callable[[], None]] = cb
        self.stack_size = stack_size if stack_size > 0 else DEFAULT_STACK_SIZE
        self.run_in_scheduler = run_in_scheduler
        self.state = FiberState.READY
        self.home_thread_id: Optional[int] = None
        self._is_main = False
        self._thread: Optional[threading.Thread] = None
        self._wake = threading.Semaphore(0)
        self._back = threading.Semaphore(0)
        self._hook = False
        self._error: Optional[BaseException] = None
        with _live_lock:
            _live.add(self)

    @classmethod
    def _new_main(cls) -> "Fiber":
        fiber = cls.__new__(cls)
        fiber.id = next(_ids)
        fiber.cb = None
        fiber.stack_size = 0
        fiber.run_in_scheduler = False
        fiber.state = FiberState.RUNNING
        fiber.home_thread_id = get_thread_id()
        fiber._is_main = True
        fiber._thread = None
        fiber._wake = threading.Semaphore(0)
        fiber._back = threading.Semaphore(0)
        fiber._hook = False
        fiber._error = None
        with _live_lock:
            _live.add(fiber)
        logger.debug("[fiber] create fiber , id = %d", fiber.id)
        return fiber

    @property
    def is_main(self) -> bool:
        """Whether this is the main fiber of a thread rather than one running a callback."""
        return self._is_main

    def _run(self) -> None:
        _local.current = self
        set_hook_enable(self._hook)
        cb = self.cb
        try:
            if cb is not None:
                cb()
        except BaseException as exc:  # handed back to resume()
            self._error = exc
        finally:
            self.cb = None
            self.state = FiberState.TERM
            self._back.release()

    def resume(self) -> None:
        """Run the fiber until it yields or finishes.

        An exception raised by the callback is re-raised here.
        """
        cond_panic(not self._is_main, "cannot resume a main fiber")
        cond_panic(self.state not in (FiberState.TERM, FiberState.RUNNING), "state error")
        caller = Fiber.get_this()
        self.home_thread_id = get_thread_id()
        self._hook = is_hook_enable()
        self.state = FiberState.RUNNING
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._run, name=f"fiber-{self.id}", daemon=True
            )
            self._thread.start()
        else:
            self._wake.release()
        self._back.acquire()
        Fiber.set_this(caller)
        error, self._error = self._error, None
        if error is not None:
            raise error

    def yield_(self) -> None:
        """Hand control back to whoever resumed this fiber; must run inside it."""
        cond_panic(self.state in (FiberState.TERM, FiberState.RUNNING), "state error")
        cond_panic(
            self._thread is not None and threading.current_thread() is self._thread,
            "yield_ called outside the fiber",
        )
        if self.state is not FiberState.TERM:
            self.state = FiberState.READY
        self._back.release()
        self._wake.acquire()
        _local.current = self
        set_hook_enable(self._hook)

    def reset(self, cb: Callable[[], None]) -> None:
        """Reuse a finished fiber to run a new callback."""
        cond_panic(not self._is_main, "stack is nullptr")
        cond_panic(self.state is FiberState.TERM, "state isn't TERM")
        if self._thread is not None:
            self._thread.join()
        self._thread = None
        self._error = None
        self.cb = cb
        self.state = FiberState.READY

    @staticmethod
    def get_this() -> "Fiber":
        """The fiber now running; a thread's main fiber is made on first use."""
        current = getattr(_local, "current", None)
        if current is not None:
            return current
        main = Fiber._new_main()
        _local.current = main
        _local.main = main
        return main

    @staticmethod
    def set_this(fiber: Optional["Fiber"]) -> None:
        _local.current = fiber

    @staticmethod
    def total_fibers() -> int:
        """How many fibers are alive."""
        with _live_lock:
            return len(_live)

    def __repr__(self) -> str:
        return f"Fiber(id={self.id}, state={self.state.name})"