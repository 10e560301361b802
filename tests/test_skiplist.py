import random

import pytest

from monsoonkv.skiplist import SkipList


def make(max_level=6, seed=1):
    return SkipList(max_level, rng=random.Random(seed))


def test_insert_keeps_keys_sorted():
    sl = make()
    keys = [50, 1, 100, 30, 4, 70, 9, 10, 40, 60]
    for k in keys:
        assert sl.insert_element(k, f"v{k}") is True
    assert list(sl) == sorted(keys)
    assert sl.size() == len(keys)
    assert len(sl) == len(keys)


def test_duplicate_insert_is_rejected_and_value_kept():
    sl = make()
    assert sl.insert_element(1, "a") is True
    assert sl.insert_element(1, "b") is False
    assert sl.search_element(1) == "a"
    assert sl.size() == 1


def test_search_missing_raises_key_error():
    sl = make()
    sl.insert_element(3, "x")
    with pytest.raises(KeyError):
        sl.search_element(4)
    assert 3 in sl
    assert 4 not in sl


def test_delete_element():
    sl = make()
    for k in range(20):
        sl.insert_element(k, str(k))
    assert sl.delete_element(7) is True
    assert sl.delete_element(7) is False
    assert 7 not in sl
    assert sl.size() == 19
    assert list(sl) == [k for k in range(20) if k != 7]


def test_delete_all_shrinks_level():
    sl = make()
    for k in range(30):
        sl.insert_element(k, k)
    for k in range(30):
        sl.delete_element(k)
    assert sl.size() == 0
    assert sl.level == 0
    assert list(sl) == []


def test_insert_set_element_replaces_value():
    sl = make()
    sl.insert_set_element("x", "1")
    sl.insert_set_element("x", "2")
    assert sl.search_element("x") == "2"
    assert sl.size() == 1


def test_dump_and_load_round_trip():
    sl = make()
    data = {"b": "2", "a": "1", "c": "3"}
    for k, v in data.items():
        sl.insert_element(k, v)
    dumped = sl.dump_file()
    other = make(seed=9)
    other.load_file(dumped)
    assert list(other.items()) == sorted(data.items())
    assert other.dump_file() == dumped


def test_load_empty_string_is_noop():
    sl = make()
    sl.load_file("")
    assert sl.size() == 0


def test_load_malformed_raises():
    sl = make()
    with pytest.raises(ValueError):
        sl.load_file("not a dump")


def test_random_level_within_bounds():
    sl = make(max_level=4, seed=3)
    levels = {sl.get_random_level() for _ in range(500)}
    assert min(levels) >= 1
    assert max(levels) <= 4


def test_zero_max_level_still_works():
    sl = make(max_level=0)
    for k in [3, 1, 2]:
        sl.insert_element(k, k)
    assert list(sl) == [1, 2, 3]


def test_negative_max_level_rejected():
    with pytest.raises(ValueError):
        SkipList(-1)


def test_display_list_levels_are_sorted_subsets(capsys):
    sl = make(max_level=5, seed=11)
    for k in [5, 3, 8, 1]:
        sl.insert_element(k, "v")
    sl.display_list()
    out = capsys.readouterr().out
    assert "*****Skip List*****" in out
    lines = [line for line in out.splitlines() if line.startswith("Level ")]
    assert lines[0] == "Level 0: 1:v;3:v;5:v;8:v;"
    bottom = [1, 3, 5, 8]
    for line in lines:
        body = line.split(": ", 1)[1]
        keys = [int(entry.split(":")[0]) for entry in body.split(";") if entry]
        assert keys == sorted(keys)
        assert set(keys) <= set(bottom)