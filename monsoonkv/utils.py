"""Low-level helpers for the fiber runtime: thread ids, a monotonic clock,
stack dumps, assertions and the per-thread hook switch."""

from __future__ import annotations

import threading
import time
import traceback

_hook_state = threading.local()


def get_thread_id() -> int:
    """The operating-system id of the calling thread."""
    return threading.get_native_id()


def get_fiber_id() -> int:
    """Fiber ids are not tracked per thread; always 0."""
    return 0


def elapsed_ms() -> int:
    """Milliseconds on a monotonic clock, unaffected by wall-clock changes."""
    return time.monotonic_ns() // 1_000_000


def backtrace_to_string(size: int = 64, skip: int = 0, prefix: str = "") -> str:
    """Describe the caller's stack, innermost frame first.

    At most ``size`` frames are taken, starting with the caller of this
    function; the first ``skip`` of them are left out.  Each frame becomes one
    line ``prefix + "name (file:line)"``.
    """
    stack = traceback.extract_stack()[:-1]
    frames = list(reversed(stack))[:size][skip:]
    return "".join(
        f"{prefix}{frame.name} ({frame.filename}:{frame.lineno})\n" for frame in frames
    )


def cond_panic(condition: bool, err: str) -> None:
    """Raise AssertionError with ``err`` when ``condition`` is false."""
    if not condition:
        raise AssertionError(err)


def is_hook_enable() -> bool:
    """Whether blocking calls are routed through the fiber runtime on this thread."""
    return getattr(_hook_state, "enabled", False)


def set_hook_enable(flag: bool) -> None:
    """Switch hooking of blocking calls on or off for the calling thread."""
    _hook_state.enabled = bool(flag)