"""An N-to-M scheduler that runs callbacks and fibers on a pool of threads."""

from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from .fiber import Fiber, FiberState
from .thread import Thread
from .utils import cond_panic, get_thread_id, set_hook_enable

logger = logging.getLogger(__name__)

ANY_THREAD = -1
_IDLE_WAIT_S = 0.01

_local = threading.local()
_owners: "weakref.WeakKeyDictionary[Fiber, Tuple[Scheduler, Fiber]]" = (
    weakref.WeakKeyDictionary()
)
_owners_lock = threading.Lock()

Task = Union[Fiber, Callable[[], None]]


@dataclass
class SchedulerTask:
    """A queued unit of work: a fiber or a callback, optionally pinned to a thread."""

    fiber: Optional[Fiber] = None
    cb: Optional[Callable[[], None]] = None
    thread: int = ANY_THREAD


class Scheduler:
    """Runs scheduled tasks on worker threads and, optionally, the creating thread.

    With ``use_caller`` the creating thread counts as one of ``threads``; its
    share of the work is done inside ``stop()``.
    """

    def __init__(
        self, threads: int = 1, use_caller: bool = True, name: str = "Scheduler"
    ) -> None:
        cond_panic(threads > 0, "threads <= 0")
        self.name = name
        self._use_caller = use_caller
        self._task_lock = threading.Lock()
        self._wakeup = threading.Condition()
        self._tasks: List[SchedulerTask] = []
        self._pool: List[Thread] = []
        self.thread_ids: List[int] = []
        self._active_count = 0
        self._idle_count = 0
        self._stopped = False
        self._root_fiber: Optional[Fiber] = None

        if use_caller:
            threads -= 1
            Fiber.get_this()
            cond_panic(Scheduler.get_this() is None, "GetThis err:cur scheduler is not nullptr")
            _local.scheduler = self
            self._root_fiber = Fiber(self.run, 0, False)
            Thread.set_name(name)
            _local.main_fiber = self._root_fiber
        self._thread_count = threads
        logger.debug("scheduler %s initialised", name)

    @staticmethod
    def get_this() -> Optional["Scheduler"]:
        """The scheduler driving the calling thread or fiber, if any."""
        current = getattr(_local, "scheduler", None)
        if current is not None:
            return current
        with _owners_lock:
            owner = _owners.get(Fiber.get_this())
        return owner[0] if owner else None

    @staticmethod
    def get_main_fiber() -> Optional[Fiber]:
        """The scheduling fiber of the calling thread or fiber, if any."""
        current = getattr(_local, "main_fiber", None)
        if current is not None:
            return current
        with _owners_lock:
            owner = _owners.get(Fiber.get_this())
        return owner[1] if owner else None

    def _adopt(self, fiber: Fiber, main: Fiber) -> None:
        with _owners_lock:
            _owners[fiber] = (self, main)

    def schedule(self, task: Task, thread: int = ANY_THREAD) -> None:
        """Queue a fiber or a callback; ``thread`` pins it to one thread id."""
        with self._task_lock:
            need_tickle = not self._tasks
            if isinstance(task, Fiber):
                self._tasks.append(SchedulerTask(fiber=task, thread=thread))
            elif task is not None:
                self._tasks.append(SchedulerTask(cb=task, thread=thread))
        if need_tickle:
            self.tickle()

    def start(self) -> None:
        """Start the worker threads."""
        with self._task_lock:
            if self._stopped:
                logger.debug("scheduler has stopped")
                return
            cond_panic(not self._pool, "thread pool is not empty")
            for i in range(self._thread_count):
                worker = Thread(self.run, f"{self.name}_{i}")
                self._pool.append(worker)
        self.thread_ids.extend(worker.id for worker in list(self._pool))

    def stop(self) -> None:
        """Wait until every task has run, then stop all scheduling threads."""
        if self.stopping():
            return
        self._stopped = True
        if self._use_caller:
            cond_panic(Scheduler.get_this() is self, "cur thread is not caller thread")
        else:
            cond_panic(Scheduler.get_this() is not self, "cur thread is caller thread")

        for _ in range(self._thread_count):
            self.tickle()
        if self._root_fiber is not None:
            self.tickle()
            self._root_fiber.resume()
            logger.debug("root fiber end")

        with self._task_lock:
            threads, self._pool = self._pool, []
        for worker in threads:
            worker.join()
        if getattr(_local, "scheduler", None) is self:
            _local.scheduler = None
            _local.main_fiber = None

    def tickle(self) -> None:
        """Wake idle scheduling threads."""
        logger.debug("tickle")
        with self._wakeup:
            self._wakeup.notify_all()

    def run(self) -> None:
        """The scheduling loop of one thread."""
        set_hook_enable(True)
        _local.scheduler = self
        main = Fiber.get_this()
        _local.main_fiber = main
        my_id = get_thread_id()
        idle_fiber = Fiber(self.idle)
        self._adopt(idle_fiber, main)

        while True:
            task: Optional[SchedulerTask] = None
            tickle_me = False
            with self._task_lock:
                for index, candidate in enumerate(self._tasks):
                    if candidate.thread != ANY_THREAD and candidate.thread != my_id:
                        tickle_me = True
                        continue
                    cond_panic(
                        candidate.fiber is not None or candidate.cb is not None,
                        "task is nullptr",
                    )
                    if candidate.fiber is not None:
                        cond_panic(
                            candidate.fiber.state is FiberState.READY,
                            "fiber task state error",
                        )
                    task = candidate
                    del self._tasks[index]
                    self._active_count += 1
                    tickle_me = tickle_me or index < len(self._tasks)
                    break
            if tickle_me:
                self.tickle()

            if task is None:
                if idle_fiber.state is FiberState.TERM:
                    logger.debug("idle fiber term")
                    break
                with self._task_lock:
                    self._idle_count += 1
                try:
                    idle_fiber.resume()
                finally:
                    with self._task_lock:
                        self._idle_count -= 1
                continue

            fiber = task.fiber if task.fiber is not None else Fiber(task.cb)
            self._adopt(fiber, main)
            try:
                fiber.resume()
            finally:
                with self._task_lock:
                    self._active_count -= 1
        logger.debug("run exit")

    def idle(self) -> None:
        """Runs when there is nothing to do; finishes once the scheduler may stop."""
        while not self.stopping():
            with self._wakeup:
                self._wakeup.wait(_IDLE_WAIT_S)
            Fiber.get_this().yield_()

    def stopping(self) -> bool:
        with self._task_lock:
            return self._stopped and not self._tasks and self._active_count == 0

    def has_idle_threads(self) -> bool:
        with self._task_lock:
            return self._idle_count > 0