import random

import pytest

from monsoonkv.skiplist import SkipList


def test_dump_and_load_pairs():
    sl = SkipList(6)
    for k, v in [("key1", "value1"), ("key2", "value2"), ("key3", "value3")]:
        sl.insert_element(k, v)
    restored = SkipList(6)
    restored.load_file(sl.dump_file())
    assert list(restored.items()) == [("key1", "value1"), ("key2", "value2"), ("key3", "value3")]
    assert len(restored) == 3


def test_insert_and_duplicate():
    sl = SkipList(4)
    assert sl.insert_element(5, "five") is True
    assert sl.insert_element(5, "other") is False
    assert sl.search_element(5) == "five"
    assert len(sl) == 1


def test_search_missing_raises():
    sl = SkipList(4)
    sl.insert_element("a", "1")
    with pytest.raises(KeyError):
        sl.search_element("b")
    assert "a" in sl
    assert "b" not in sl


def test_delete():
    sl = SkipList(4)
    for k in [3, 1, 2]:
        sl.insert_element(k, str(k))
    assert sl.delete_element(2) is True
    assert sl.delete_element(2) is False
    assert list(sl.items()) == [(1, "1"), (3, "3")]
    assert len(sl) == 2


def test_insert_set_element_replaces():
    sl = SkipList(4)
    sl.insert_set_element("x", "1")
    sl.insert_set_element("x", "2")
    assert sl.search_element("x") == "2"
    assert len(sl) == 1


def test_sorted_against_dict():
    rng = random.Random(7)
    sl = SkipList(8)
    reference = {}
    for _ in range(400):
        key = rng.randrange(100)
        if rng.random() < 0.3:
            assert sl.delete_element(key) == (key in reference)
            reference.pop(key, None)
        else:
            sl.insert_set_element(key, key * 2)
            reference[key] = key * 2
    assert list(sl.items()) == sorted(reference.items())
    assert len(sl) == len(reference)


def test_random_level_bounds():
    sl = SkipList(5)
    levels = {sl.random_level() for _ in range(2000)}
    assert min(levels) >= 1
    assert max(levels) <= 5


def test_load_empty_is_noop():
    sl = SkipList(3)
    sl.load_file("")
    assert len(sl) == 0
    assert sl.dump_file() == '{"keys": [], "values": []}'


def test_load_malformed_raises():
    sl = SkipList(3)
    with pytest.raises(ValueError):
        sl.load_file("garbage")


def test_display_list(capsys):
    sl = SkipList(1)
    sl.insert_element("a", "1")
    sl.insert_element("b", "2")
    sl.display_list()
    out = capsys.readouterr().out
    assert "*****Skip List*****" in out
    assert "Level 0: a:1;b:2;" in out