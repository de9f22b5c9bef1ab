import threading

import pytest

from monsoonkv.fiber import Fiber
from monsoonkv.scheduler import Scheduler


def test_zero_threads_rejected():
    with pytest.raises(AssertionError):
        Scheduler(0, True)
    done = []
    sc = Scheduler()
    sc.schedule(lambda: done.append("ok"))
    sc.stop()
    assert done == ["ok"]
    assert sc.stopping() is True


def test_user_caller_single_thread_runs_in_order():
    done = []
    sc = Scheduler()
    sc.schedule(lambda: done.append(1))
    sc.schedule(lambda: done.append(2))
    sc.schedule(Fiber(lambda: done.append(3)))
    sc.start()
    sc.stop()
    assert done == [1, 2, 3]
    assert sc.stopping() is True


def test_user_caller_multi_thread_runs_everything():
    done = []
    lock = threading.Lock()

    def make(n):
        def task():
            with lock:
                done.append(n)
        return task

    sc = Scheduler(3, True)
    sc.schedule(make(1))
    sc.schedule(make(2))
    sc.schedule(Fiber(make(3)))
    sc.start()
    sc.schedule(make(4))
    sc.stop()
    assert sorted(done) == [1, 2, 3, 4]
    assert sc.stopping() is True


def test_without_caller_thread():
    done = threading.Event()
    sc = Scheduler(2, False)
    sc.start()
    sc.schedule(done.set)
    assert done.wait(5)
    sc.stop()
    assert sc.stopping() is True


def test_get_this_inside_task():
    seen = []
    sc = Scheduler()
    sc.schedule(lambda: seen.append(Scheduler.get_this()))
    sc.stop()
    assert seen == [sc]


def test_fiber_can_reschedule_itself():
    steps = []
    sc = Scheduler()

    def task():
        steps.append("a")
        Scheduler.get_this().schedule(Fiber.get_this())
        Fiber.get_this().yield_()
        steps.append("b")

    sc.schedule(task)
    sc.schedule(lambda: steps.append("c"))
    sc.stop()
    assert steps == ["a", "c", "b"]


def test_no_idle_threads_before_running():
    sc = Scheduler()
    assert sc.has_idle_threads() is False
    sc.stop()
    assert sc.stopping() is True