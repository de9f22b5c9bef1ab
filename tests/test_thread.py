import threading

import pytest

from monsoonkv.thread import Thread
from monsoonkv.utils import get_thread_id


def test_named_threads_report_their_names():
    seen = []
    lock = threading.Lock()

    def func():
        with lock:
            seen.append((Thread.get_name(), Thread.get_this().name))

    pool = [Thread(func, "name_" + str(i)) for i in range(5)]
    for t in pool:
        t.join()
    expected = {("name_" + str(i), "name_" + str(i)) for i in range(5)}
    assert set(seen) == expected


def test_empty_name_becomes_default():
    t = Thread(lambda: None, "")
    t.join()
    assert t.name == "UNKNOW"


def test_main_thread_has_no_thread_object():
    assert Thread.get_this() is None
    assert Thread.get_name() == "UNKNOW"


def test_id_is_native_id_of_worker():
    recorded = {}

    def func():
        recorded["id"] = get_thread_id()

    t = Thread(func, "worker")
    t.join()
    assert t.id == recorded["id"]
    assert t.id != get_thread_id()


def test_set_name_renames_current_thread():
    seen = {}

    def func():
        Thread.set_name("")
        seen["after_empty"] = Thread.get_name()
        Thread.set_name("renamed")
        seen["after"] = Thread.get_name()

    t = Thread(func, "original")
    t.join()
    assert seen == {"after_empty": "original", "after": "renamed"}
    assert t.name == "renamed"


def test_join_reraises_callback_error():
    def func():
        raise ValueError("bad")

    t = Thread(func, "failing")
    with pytest.raises(ValueError, match="bad"):
        t.join()