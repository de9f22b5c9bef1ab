"""Shared settings and helpers: timing constants, deferred calls, a blocking queue,
the command record handed to the consensus layer, and port probing."""

from __future__ import annotations

import json
import random
import re
import socket
import sys
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Generic, TypeVar

DEBUG = True

# Time unit is milliseconds; scale up on slow networks.
DEBUG_MUL = 1
HEARTBEAT_TIMEOUT = 25 * DEBUG_MUL
APPLY_INTERVAL = 10 * DEBUG_MUL
MIN_RANDOMIZED_ELECTION_TIME = 300 * DEBUG_MUL
MAX_RANDOMIZED_ELECTION_TIME = 500 * DEBUG_MUL
CONSENSUS_TIMEOUT = 500 * DEBUG_MUL

FIBER_THREAD_NUM = 1
FIBER_USE_CALLER_THREAD = False

# Replies from a key/value server to a client.
OK = "OK"
ERR_NO_KEY = "ErrNoKey"
ERR_WRONG_LEADER = "ErrWrongLeader"

_PORT_ATTEMPTS = 30

T = TypeVar("T")


class Defer:
    """Context manager that calls ``func(*args, **kwargs)`` when the block exits."""

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._func = func
        self._args = args
        self._kwargs = kwargs

    def __enter__(self) -> "Defer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._func(*self._args, **self._kwargs)
        return False


class LockQueue(Generic[T]):
    """Thread-safe FIFO queue whose reads block until an item is available."""

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()

    def push(self, item: T) -> None:
        with self._cond:
            self._items.append(item)
            self._cond.notify()

    def pop(self) -> T:
        with self._cond:
            self._cond.wait_for(lambda: bool(self._items))
            return self._items.popleft()

    def pop_timeout(self, timeout_ms: float) -> T:
        """Pop an item, raising TimeoutError if none arrives within ``timeout_ms``."""
        with self._cond:
            if not self._cond.wait_for(lambda: bool(self._items), timeout_ms / 1000.0):
                raise TimeoutError(f"no item within {timeout_ms} ms")
            return self._items.popleft()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


@dataclass
class Op:
    """A client command ("Get", "Put" or "Append") passed to the consensus layer."""

    operation: str = ""
    key: str = ""
    value: str = ""
    client_id: str = ""
    request_id: int = 0

    def as_string(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_string(cls, text: str) -> "Op":
        try:
            data = json.loads(text)
            return cls(
                operation=str(data["operation"]),
                key=str(data["key"]),
                value=str(data["value"]),
                client_id=str(data["client_id"]),
                request_id=int(data["request_id"]),
            )
        except (TypeError, KeyError, ValueError) as exc:
            raise ValueError(f"cannot parse Op from {text!r}") from exc

    def __str__(self) -> str:
        return (
            f"[MyClass:Operation{{{self.operation}}},Key{{{self.key}}},Value{{{self.value}}},"
            f"ClientId{{{self.client_id}}},RequestId{{{self.request_id}}}"
        )


_SPEC = re.compile(
    r"%%|(%[-+ #0]*(?:\*|\d+)?(?:\.(?:\*|\d+))?)(?:hh|ll|[hlLzjtq])(?=[diouxXeEfFgGcs])"
)


def _strip_length(match: re.Match) -> str:
    return match.group(1) if match.group(1) else match.group(0)


def cformat(format_str: str, *args: Any) -> str:
    """Format like C ``printf``; length modifiers such as ``l`` or ``z`` are accepted."""
    fmt = _SPEC.sub(_strip_length, format_str)
    try:
        return fmt % args
    except (TypeError, ValueError) as exc:
        raise ValueError("Error during formatting.") from exc


def debug_print(fmt: str, *args: Any) -> None:
    """Print a timestamped debug line when DEBUG is on."""
    if not DEBUG:
        return
    t = time.localtime()
    stamp = f"[{t.tm_year}-{t.tm_mon}-{t.tm_mday}-{t.tm_hour}-{t.tm_min}-{t.tm_sec}] "
    sys.stdout.write(stamp + cformat(fmt, *args) + "\n")


def my_assert(condition: bool, message: str = "Assertion failed!") -> None:
    """Raise AssertionError carrying ``message`` when ``condition`` is false."""
    if not condition:
        raise AssertionError(message)


def now() -> float:
    """A monotonic timestamp in seconds, for measuring intervals."""
    return time.monotonic()


def random_election_timeout() -> int:
    """A random election timeout in milliseconds, bounds inclusive."""
    return random.randint(MIN_RANDOMIZED_ELECTION_TIME, MAX_RANDOMIZED_ELECTION_TIME)


def sleep_ms(n: float) -> None:
    time.sleep(n / 1000.0)


def is_release_port(port: int) -> bool:
    """Whether a TCP socket can be bound to ``port`` on the loopback address."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except (OSError, OverflowError):
            return False
    return True


def get_release_port(port: int) -> int:
    """Return the first free port among the next few starting at ``port``."""
    for candidate in range(port, port + _PORT_ATTEMPTS):
        if is_release_port(candidate):
            return candidate
    raise OSError(f"no free port in {port}..{port + _PORT_ATTEMPTS - 1}")