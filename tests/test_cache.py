import time
from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from treehole.cache import Cache


@dataclass
class Point:
    x: int
    y: int


def test_round_trip():
    cache = Cache()
    cache.set("k", {"a": [1, 2], "b": "文本"}, 0)
    assert cache.get("k") == {"a": [1, 2], "b": "文本"}


def test_missing_key_is_none():
    assert Cache().get("nope") is None


def test_delete_removes_and_ignores_missing():
    cache = Cache()
    cache.set("k", 1, 0)
    cache.delete("k")
    cache.delete("k")
    assert cache.get("k") is None


def test_expiration():
    cache = Cache()
    cache.set("k", 1, 0.01)
    time.sleep(0.05)
    assert cache.get("k") is None


def test_timedelta_expiration_keeps_value():
    cache = Cache()
    cache.set("k", 3, timedelta(minutes=10))
    assert cache.get("k") == 3


def test_default_expiration_used():
    cache = Cache(default_expiration=0.01)
    cache.set("k", 1)
    time.sleep(0.05)
    assert cache.get("k") is None


def test_zero_never_expires():
    cache = Cache(default_expiration=0.01)
    cache.set("k", 1, 0)
    time.sleep(0.05)
    assert cache.get("k") == 1


def test_get_returns_copy():
    cache = Cache()
    cache.set("k", {"a": 1}, 0)
    value = cache.get("k")
    value["a"] = 2
    assert cache.get("k") == {"a": 1}


def test_dataclass_and_datetime_encoded():
    cache = Cache()
    moment = datetime(2024, 1, 2, 3, 4, 5)
    cache.set("k", {"p": Point(1, 2), "t": moment}, 0)
    assert cache.get("k") == {"p": {"x": 1, "y": 2}, "t": moment.isoformat()}


def test_unserializable_raises():
    with pytest.raises(TypeError):
        Cache().set("k", object(), 0)