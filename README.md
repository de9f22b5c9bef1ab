# monsoonkv

Building blocks for a key-value service on one machine. The package covers cooperative fibers, a thread-pool scheduler, timers and an I/O event manager. It also has an ordered skip-list store and a few shared helpers. It uses the standard library only.

## Modules

- `monsoonkv.common` holds timing constants such as `HEARTBEAT_TIMEOUT` and the election-time bounds, and the reply codes `OK`, `ERR_NO_KEY` and `ERR_WRONG_LEADER`. It also provides:
  - `Defer(func, *args, **kwargs)`, a context manager that calls `func` when its block exits.
  - `LockQueue`, a thread-safe FIFO queue. `pop()` blocks until an item arrives. `pop_timeout(ms)` raises `TimeoutError` if none comes in time.
  - `Op`, a dataclass for a client command. `as_string()` and `Op.from_string()` turn it into JSON and back. `from_string` raises `ValueError` on bad input.
  - `cformat(fmt, *args)` formats like C `printf`, accepting length modifiers such as `%ld`.
  - `debug_print` prints a timestamped line when `DEBUG` is on.
  - `my_assert` raises `AssertionError` when its condition is false.
  - `random_election_timeout()`, `sleep_ms(n)` and `now()` deal with timing.
  - `is_release_port(port)` tells whether a port is free. `get_release_port(port)` returns the first free port among the 30 starting at `port`, and raises `OSError` if none is free.
- `monsoonkv.skiplist` provides `SkipList(max_level)`, an ordered map:
  - `insert_element` returns `False` if the key already exists.
  - `insert_set_element` inserts the key or replaces its value.
  - `search_element` returns the value or raises `KeyError`.
  - `delete_element` returns whether the key was present.
  - `dump_file()` and `load_file(dump)` write all entries to a JSON string and read them back.
  - The map also supports `items()`, `len()`, `in` and `display_list()`.
- `monsoonkv.utils` provides thread ids, a monotonic millisecond clock (`elapsed_ms`), `backtrace_to_string` and `cond_panic`. It also has a per-thread hook flag, `is_hook_enable` and `set_hook_enable`.
- `monsoonkv.mutex` provides `RWMutex`, a readers-writer lock. Use it with the `read_locked()` and `write_locked()` context managers.
- `monsoonkv.thread` provides `Thread(cb, name)`, a named thread that starts at once. `join()` re-raises anything its callback raised. `Thread.get_this()`, `Thread.get_name()` and `Thread.set_name()` refer to the calling thread.
- `monsoonkv.fd_manager` provides `FdCtx` and `FdManager`, which hold per-descriptor state: whether it is a socket, its blocking mode, and its receive and send timeouts. `fd_manager()` returns the process-wide instance.
- `monsoonkv.timer` provides `TimerManager` with `add_timer`, `add_condition_timer`, `get_next_timer` and `list_expired_callbacks`:
  - `add_condition_timer` runs its callback only while a weakly referenced object is still alive.
  - `get_next_timer` returns `None` when there are no timers.
  - `list_expired_callbacks` returns the callbacks of due timers and reschedules the recurring ones.
  - The returned `Timer` objects support `cancel()`, `refresh()` and `reset(ms, from_now)`.
- `monsoonkv.fiber` provides `Fiber(cb)`, a task that can pause with `yield_()` and continue with `resume()`. `reset(cb)` reuses a finished fiber. Each fiber runs on a backing thread, and control passes explicitly between it and whoever resumed it. `FiberState` gives a fiber's state.
- `monsoonkv.scheduler` provides `Scheduler(threads, use_caller, name)`. It runs scheduled fibers and callbacks on worker threads. With `use_caller` the creating thread is one of the workers and does its share inside `stop()`.
- `monsoonkv.iomanager` provides `IOManager`, a scheduler that is also a `TimerManager`:
  - Its idle threads wait on a `selectors` selector for readiness and due timers.
  - `add_event(fd, Event.READ, cb)` runs `cb` once when `fd` becomes readable. Without `cb`, the calling fiber is queued instead.
  - `del_event` forgets a registered event.
  - `cancel_event` and `cancel_all` run the registered callbacks immediately.
  - `close()` waits for pending work, then releases resources. `IOManager` is also a context manager.
- `monsoonkv.server` provides `EchoServer(iomanager, port)`, a TCP server that sends back whatever each client sends. It also has `main(argv=None)`.

## Installing

```
pip install .
```

For tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from monsoonkv.skiplist import SkipList

store = SkipList(6)
store.insert_element("a", "1")
store.insert_set_element("a", "2")
print(store.search_element("a"))   # 2
restored = SkipList(6)
restored.load_file(store.dump_file())
print(list(restored.items()))      # [('a', '2')]
```

```python
from monsoonkv.scheduler import Scheduler

sc = Scheduler(3, True, "demo")
sc.schedule(lambda: print("hello from a fiber"), -1)
sc.start()
sc.stop()
```

```python
import socket
from monsoonkv.iomanager import Event, IOManager

left, right = socket.socketpair()
with IOManager() as iom:
    iom.add_event(right.fileno(), Event.READ, lambda: print(right.recv(64)))
    left.send(b"ping")
# leaving the block waits until the read callback has run
```

## Echo server

```
monsoonkv-echo            # listens on port 8080
monsoonkv-echo -p 9000
```

The command serves until it is interrupted.

## What the package does not do

- It does not make ordinary blocking calls such as `time.sleep`, `socket.recv` or `socket.connect` yield the current fiber. Inside a fiber, use `IOManager.add_event` or a timer to wait without blocking a scheduling thread.
- It has no consensus node, key-value server or client. `Op`, the reply codes and the timing constants are there for such code to use, but nothing in the package replicates or serves data over the network apart from the echo server.