import threading

import pytest

from monsoonkv.mutex import RWMutex


def _assert_released(m):
    with pytest.raises(RuntimeError):
        m.unlock()


def test_readers_share_the_lock():
    m = RWMutex()
    barrier = threading.Barrier(2, timeout=2)
    results = []

    def reader():
        with m.read_locked():
            barrier.wait()
            results.append("ok")

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(3)
    assert results == ["ok", "ok"]
    with pytest.raises(RuntimeError):
        m.unlock()


def test_writer_excludes_readers():
    m = RWMutex()
    acquired = threading.Event()

    def reader():
        with m.read_locked():
            acquired.set()

    m.wrlock()
    t = threading.Thread(target=reader)
    t.start()
    assert acquired.wait(0.1) is False
    m.unlock()
    assert acquired.wait(2) is True
    t.join(2)
    with pytest.raises(RuntimeError):
        m.unlock()


def test_reader_excludes_writer():
    m = RWMutex()
    acquired = threading.Event()

    def writer():
        with m.write_locked():
            acquired.set()

    m.rdlock()
    t = threading.Thread(target=writer)
    t.start()
    assert acquired.wait(0.1) is False
    m.unlock()
    assert acquired.wait(2) is True
    t.join(2)
    with pytest.raises(RuntimeError):
        m.unlock()


def test_context_manager_releases_on_error():
    m = RWMutex()
    with pytest.raises(KeyError):
        with m.write_locked():
            raise KeyError("x")
    got = threading.Event()

    def reader():
        with m.read_locked():
            got.set()

    t = threading.Thread(target=reader)
    t.start()
    assert got.wait(2) is True
    t.join(2)
    with pytest.raises(RuntimeError):
        m.unlock()


def test_unlock_without_lock_raises():
    m = RWMutex()
    with pytest.raises(RuntimeError):
        m.unlock()