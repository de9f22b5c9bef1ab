"""Millisecond timers kept in deadline order, with one-shot, recurring and
conditional callbacks."""

from __future__ import annotations

import bisect
import itertools
import math
import weakref
from typing import Any, Callable, List, Optional, Tuple

from .mutex import RWMutex
from .utils import elapsed_ms

# A clock that jumps back by more than this is treated as having rolled over.
_ROLLOVER_MS = 60 * 60 * 1000

_sequence = itertools.count()

_Entry = Tuple[int, int, "Timer"]


class Timer:
    """A callback due at ``next`` milliseconds on the monotonic clock.

    Timers are made by a TimerManager, which keeps them ordered by deadline.
    """

    def __init__(
        self,
        ms: int,
        cb: Optional[Callable[[], None]],
        recurring: bool,
        manager: "TimerManager",
    ) -> None:
        self.ms = ms
        self.cb = cb
        self.recurring = recurring
        self.next = elapsed_ms() + ms
        self._manager = manager
        self._seq = next(_sequence)

    def _entry(self) -> _Entry:
        return (self.next, self._seq, self)

    def cancel(self) -> bool:
        """Remove the timer; return False if it had already fired or been cancelled."""
        manager = self._manager
        with manager._mutex.write_locked():
            if self.cb is None:
                return False
            self.cb = None
            manager._remove(self)
            return True

    def refresh(self) -> bool:
        """Restart the period from now; return False if the timer is no longer pending."""
        manager = self._manager
        with manager._mutex.write_locked():
            if self.cb is None:
                return False
            if not manager._remove(self):
                return False
            self.next = elapsed_ms() + self.ms
            manager._insert(self)
            return True

    def reset(self, ms: int, from_now: bool) -> bool:
        """Change the period to ``ms``.

        With ``from_now`` the next deadline counts from the present moment,
        otherwise from the start of the current period.
        """
        if ms == self.ms and not from_now:
            return True
        manager = self._manager
        with manager._mutex.write_locked():
            if self.cb is None:
                return True
            if not manager._remove(self):
                return False
            start = elapsed_ms() if from_now else self.next - self.ms
            self.ms = ms
            self.next = start + ms
            at_front = manager._insert(self)
        if at_front:
            manager.on_timer_inserted_at_front()
        return True

    def __repr__(self) -> str:
        return f"Timer(ms={self.ms}, next={self.next}, recurring={self.recurring})"


def _on_timer(weak_cond: "weakref.ref[Any]", cb: Callable[[], None]) -> None:
    if weak_cond() is not None:
        cb()


class TimerManager:
    """Holds timers and hands out the callbacks of those that are due."""

    def __init__(self) -> None:
        self._mutex = RWMutex()
        self._timers: List[_Entry] = []
        self._tickled = False
        self._previous_time = elapsed_ms()

    # These helpers expect the write lock to be held.
    def _insert(self, timer: Timer) -> bool:
        entry = timer._entry()
        index = bisect.bisect_left(self._timers, entry[:2])
        self._timers.insert(index, entry)
        at_front = index == 0 and not self._tickled
        if at_front:
            self._tickled = True
        return at_front

    def _remove(self, timer: Timer) -> bool:
        index = bisect.bisect_left(self._timers, (timer.next, timer._seq))
        if index < len(self._timers) and self._timers[index][2] is timer:
            del self._timers[index]
            return True
        return False

    def add_timer(
        self, ms: int, cb: Callable[[], None], recurring: bool = False
    ) -> Timer:
        """Schedule ``cb`` to be due ``ms`` milliseconds from now."""
        timer = Timer(ms, cb, recurring, self)
        with self._mutex.write_locked():
            at_front = self._insert(timer)
        if at_front:
            self.on_timer_inserted_at_front()
        return timer

    def add_condition_timer(
        self,
        ms: int,
        cb: Callable[[], None],
        weak_cond: Any,
        recurring: bool = False,
    ) -> Timer:
        """Like add_timer, but ``cb`` only runs while ``weak_cond`` is still alive.

        ``weak_cond`` is a weak reference, or an object to refer to weakly.
        """
        if not isinstance(weak_cond, weakref.ref):
            weak_cond = weakref.ref(weak_cond)
        return self.add_timer(ms, lambda: _on_timer(weak_cond, cb), recurring)

    def get_next_timer(self) -> Optional[int]:
        """Milliseconds until the earliest deadline: 0 if due, None if no timers."""
        with self._mutex.read_locked():
            self._tickled = False
            if not self._timers:
                return None
            deadline = self._timers[0][0]
        now_ms = elapsed_ms()
        return 0 if now_ms >= deadline else deadline - now_ms

    def list_expired_callbacks(self) -> List[Callable[[], None]]:
        """Take every due timer and return their callbacks in deadline order.

        Recurring timers are rescheduled; one-shot timers are spent.
        """
        now_ms = elapsed_ms()
        with self._mutex.read_locked():
            if not self._timers:
                return []
        with self._mutex.write_locked():
            if not self._timers:
                return []
            rollover = self._detect_clock_rollover(now_ms)
            if not rollover and self._timers[0][0] > now_ms:
                return []
            if rollover:
                split = len(self._timers)
            else:
                split = bisect.bisect_right(self._timers, (now_ms, math.inf))
            expired = self._timers[:split]
            del self._timers[:split]

            callbacks: List[Callable[[], None]] = []
            for _, _, timer in expired:
                if timer.cb is not None:
                    callbacks.append(timer.cb)
                if timer.recurring:
                    timer.next = now_ms + timer.ms
                    bisect.insort(self._timers, timer._entry())
                else:
                    timer.cb = None
            return callbacks

    def has_timer(self) -> bool:
        with self._mutex.read_locked():
            return bool(self._timers)

    def on_timer_inserted_at_front(self) -> None:
        """Called when a new timer becomes the earliest; subclasses wake their loop here."""

    def _detect_clock_rollover(self, now_ms: int) -> bool:
        rollover = now_ms < self._previous_time and now_ms < self._previous_time - _ROLLOVER_MS
        self._previous_time = now_ms
        return rollover