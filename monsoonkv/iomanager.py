"""A scheduler that also waits for descriptor readiness and timers."""

from __future__ import annotations

import enum
import logging
import os
import selectors
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .fiber import Fiber, FiberState
from .scheduler import Scheduler
from .timer import TimerManager
from .utils import cond_panic

logger = logging.getLogger(__name__)

_MAX_TIMEOUT_MS = 5000


class Event(enum.IntFlag):
    NONE = 0x0
    READ = 0x1
    WRITE = 0x4


def _selector_mask(events: Event) -> int:
    mask = 0
    if events & Event.READ:
        mask |= selectors.EVENT_READ
    if events & Event.WRITE:
        mask |= selectors.EVENT_WRITE
    return mask


@dataclass
class EventContext:
    """Who to run when an event fires: a callback or a fiber, on a scheduler."""

    scheduler: Optional[Scheduler] = None
    fiber: Optional[Fiber] = None
    cb: Optional[Callable[[], None]] = None

    def is_empty(self) -> bool:
        return self.scheduler is None and self.fiber is None and self.cb is None


@dataclass
class FdContext:
    """Registered events of one descriptor."""

    fd: int = 0
    events: Event = Event.NONE
    read: EventContext = field(default_factory=EventContext)
    write: EventContext = field(default_factory=EventContext)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def event_context(self, event: Event) -> EventContext:
        if event == Event.READ:
            return self.read
        if event == Event.WRITE:
            return self.write
        raise ValueError(f"getContext invalid event: {event!r}")

    def reset_event_context(self, ctx: EventContext) -> None:
        ctx.scheduler = None
        ctx.fiber = None
        ctx.cb = None

    def trigger_event(self, event: Event) -> None:
        """Clear ``event`` and queue its callback or fiber on its scheduler."""
        cond_panic(bool(self.events & event), "event hasn't been registed")
        self.events = Event(self.events & ~event)
        ctx = self.event_context(event)
        cond_panic(ctx.scheduler is not None, "event has no scheduler")
        if ctx.cb is not None:
            ctx.scheduler.schedule(ctx.cb)
        else:
            ctx.scheduler.schedule(ctx.fiber)
        self.reset_event_context(ctx)


class IOManager(Scheduler, TimerManager):
    """Scheduler whose idle threads wait for I/O readiness and due timers."""

    def __init__(
        self, threads: int = 1, use_caller: bool = True, name: str = "IOManager"
    ) -> None:
        Scheduler.__init__(self, threads, use_caller, name)
        TimerManager.__init__(self)
        self._selector = selectors.DefaultSelector()
        self._tickle_r, self._tickle_w = os.pipe()
        os.set_blocking(self._tickle_r, False)
        os.set_blocking(self._tickle_w, False)
        self._selector.register(self._tickle_r, selectors.EVENT_READ, None)
        self._ctx_lock = threading.Lock()
        self._contexts: Dict[int, FdContext] = {}
        self._pending_lock = threading.Lock()
        self._pending = 0
        self._closed = False
        self.start()

    def __enter__(self) -> "IOManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def pending_events(self) -> int:
        with self._pending_lock:
            return self._pending

    def _add_pending(self, delta: int) -> None:
        with self._pending_lock:
            self._pending += delta

    def _context(self, fd: int, create: bool) -> Optional[FdContext]:
        with self._ctx_lock:
            ctx = self._contexts.get(fd)
            if ctx is None and create:
                ctx = FdContext(fd=fd)
                self._contexts[fd] = ctx
            return ctx

    def _update_selector(self, fd: int, ctx: FdContext, old: Event, new: Event) -> None:
        try:
            if not old:
                self._selector.register(fd, _selector_mask(new), ctx)
            elif not new:
                self._selector.unregister(fd)
            else:
                self._selector.modify(fd, _selector_mask(new), ctx)
        except (KeyError, ValueError, OSError) as exc:
            raise OSError(f"cannot update events of fd {fd}") from exc

    def add_event(
        self, fd: int, event: Event, cb: Optional[Callable[[], None]] = None
    ) -> None:
        """Wait for ``event`` on ``fd``; then run ``cb``, or resume the calling fiber.

        Raises OSError if the descriptor cannot be watched.
        """
        event = Event(event)
        ctx = self._context(fd, create=True)
        with ctx.lock:
            cond_panic(not (ctx.events & event), f"addevent error, fd = {fd}")
            new_events = Event(ctx.events | event)
            self._update_selector(fd, ctx, ctx.events, new_events)
            self._add_pending(1)
            ctx.events = new_events
            event_ctx = ctx.event_context(event)
            cond_panic(event_ctx.is_empty(), "event_ctx is nullptr")
            event_ctx.scheduler = Scheduler.get_this() or self
            if cb is not None:
                event_ctx.cb = cb
            else:
                event_ctx.fiber = Fiber.get_this()
                cond_panic(
                    event_ctx.fiber.state is FiberState.RUNNING,
                    f"state={event_ctx.fiber.state}",
                )
        logger.debug("add event success,fd = %d", fd)
        self.tickle()

    def _remove_event(self, fd: int, event: Event, trigger: bool) -> bool:
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not (ctx.events & event):
                return False
            new_events = Event(ctx.events & ~event)
            try:
                self._update_selector(fd, ctx, ctx.events, new_events)
            except OSError:
                logger.debug("delevent: selector error on fd %d", fd)
                return False
            if trigger:
                ctx.trigger_event(event)
            else:
                ctx.events = new_events
                ctx.reset_event_context(ctx.event_context(event))
            self._add_pending(-1)
            return True

    def del_event(self, fd: int, event: Event) -> bool:
        """Forget ``event`` on ``fd`` without running its callback."""
        return self._remove_event(fd, Event(event), trigger=False)

    def cancel_event(self, fd: int, event: Event) -> bool:
        """Stop watching ``event`` on ``fd`` and run its callback once."""
        return self._remove_event(fd, Event(event), trigger=True)

    def cancel_all(self, fd: int) -> bool:
        """Stop watching ``fd`` altogether, running every registered callback."""
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not ctx.events:
                return False
            try:
                self._update_selector(fd, ctx, ctx.events, Event.NONE)
            except OSError:
                logger.debug("delevent: selector error on fd %d", fd)
                return False
            for event in (Event.READ, Event.WRITE):
                if ctx.events & event:
                    ctx.trigger_event(event)
                    self._add_pending(-1)
            cond_panic(ctx.events == Event.NONE, "fd not totally clear")
            return True

    @staticmethod
    def get_this() -> Optional["IOManager"]:
        current = Scheduler.get_this()
        return current if isinstance(current, IOManager) else None

    def tickle(self) -> None:
        if not self.has_idle_threads():
            return
        try:
            os.write(self._tickle_w, b"T")
        except BlockingIOError:
            pass

    def _drain_tickle(self) -> None:
        while True:
            try:
                if not os.read(self._tickle_r, 256):
                    return
            except BlockingIOError:
                return

    def idle(self) -> None:
        while True:
            next_timeout = self.get_next_timer()
            if next_timeout is None and self.pending_events == 0 and Scheduler.stopping(self):
                logger.debug("name=%s idle stopping exit", self.name)
                break
            timeout_ms = _MAX_TIMEOUT_MS if next_timeout is None else min(next_timeout, _MAX_TIMEOUT_MS)
            try:
                ready = self._selector.select(timeout_ms / 1000.0)
            except OSError as exc:
                logger.debug("select error: %s", exc)
                ready = []

            for cb in self.list_expired_callbacks():
                self.schedule(cb)

            for key, mask in ready:
                if key.fd == self._tickle_r:
                    self._drain_tickle()
                    continue
                ctx: FdContext = key.data
                with ctx.lock:
                    real = Event.NONE
                    if mask & selectors.EVENT_READ:
                        real |= Event.READ
                    if mask & selectors.EVENT_WRITE:
                        real |= Event.WRITE
                    if not (ctx.events & real):
                        continue
                    left = Event(ctx.events & ~real)
                    try:
                        self._update_selector(ctx.fd, ctx, ctx.events, left)
                    except OSError as exc:
                        logger.debug("selector update error: %s", exc)
                        continue
                    for event in (Event.READ, Event.WRITE):
                        if real & event and ctx.events & event:
                            ctx.trigger_event(event)
                            self._add_pending(-1)
            Fiber.get_this().yield_()

    def stopping(self) -> bool:
        return (
            self.get_next_timer() is None
            and self.pending_events == 0
            and Scheduler.stopping(self)
        )

    def on_timer_inserted_at_front(self) -> None:
        self.tickle()

    def close(self) -> None:
        """Run everything still pending, then release the selector and pipe."""
        if self._closed:
            return
        self.stop()
        self._closed = True
        self._selector.close()
        os.close(self._tickle_r)
        os.close(self._tickle_w)