import threading
import time

import pytest

from monsoonkv.utils import (
    backtrace_to_string,
    cond_panic,
    elapsed_ms,
    get_fiber_id,
    get_thread_id,
    is_hook_enable,
    set_hook_enable,
)


def _run_in_thread(func):
    result = {}

    def target():
        result["value"] = func()

    t = threading.Thread(target=target)
    t.start()
    t.join()
    return result["value"]


def test_thread_id_matches_native_id():
    assert get_thread_id() == threading.get_native_id()


def test_thread_id_in_other_thread_is_its_own():
    def both():
        return get_thread_id(), threading.get_native_id()

    other_pkg, other_native = _run_in_thread(both)
    main_id = get_thread_id()
    assert other_pkg == other_native
    assert main_id == threading.get_native_id()
    assert main_id != other_pkg


def test_fiber_id_is_zero():
    assert get_fiber_id() == 0


def test_elapsed_ms_advances():
    start = elapsed_ms()
    time.sleep(0.03)
    end = elapsed_ms()
    assert end - start >= 20


def test_backtrace_starts_with_caller():
    text = backtrace_to_string(10, 0, ">> ")
    lines = text.splitlines()
    assert lines[0].startswith(">> test_backtrace_starts_with_caller")
    assert all(line.startswith(">> ") for line in lines)
    assert len(lines) <= 10


def _inner():
    return backtrace_to_string(5, 1, "")


def test_backtrace_skip_drops_innermost_frames():
    lines = _inner().splitlines()
    assert lines[0].startswith("test_backtrace_skip_drops_innermost_frames")
    assert len(lines) <= 4


def test_cond_panic_raises_with_message():
    assert cond_panic(True, "never") is None
    with pytest.raises(AssertionError) as info:
        cond_panic(False, "state error")
    assert "state error" in str(info.value)


def test_hook_enable_is_thread_local():
    set_hook_enable(True)
    try:
        assert is_hook_enable() is True
        assert _run_in_thread(is_hook_enable) is False
    finally:
        set_hook_enable(False)
    assert is_hook_enable() is False