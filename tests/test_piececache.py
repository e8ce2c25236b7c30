import threading
import time

import pytest

from raintorrent.piececache import Cache


class LoadError(Exception):
    pass


def test_cache():
    c = Cache(10, 60, 1)
    assert len(c) == 0
    assert c.keys() == []
    assert c.size() == 0

    calls = []

    def foo_loader():
        calls.append(1)
        return b"bar"

    assert c.get("foo", foo_loader) == b"bar"
    assert len(calls) == 1
    assert len(c) == 1
    assert len(c.keys()) == 1
    assert c.size() == 3

    assert c.get("foo", foo_loader) == b"bar"
    assert len(calls) == 1
    assert len(c) == 1
    assert c.size() == 3

    err = LoadError("load error")

    def err_loader():
        raise err

    with pytest.raises(LoadError) as exc_info:
        c.get("foo2", err_loader)
    assert exc_info.value is err
    assert len(c) == 1
    assert len(c.keys()) == 1
    assert c.size() == 3

    assert c.get("foo8", lambda: b"12345678") == b"12345678"
    assert len(c) == 1
    assert c.keys() == ["foo8"]
    assert c.size() == 8

    assert c.get("oversized", lambda: b"12345678901") == b"12345678901"
    assert len(c) == 1
    assert c.keys() == ["foo8"]
    assert c.size() == 8

    assert c.get("second", lambda: b"a") == b"a"
    assert len(c) == 2
    assert c.size() == 9
    assert c.keys() == ["foo8", "second"]

    assert c.get("foo8", None) == b"12345678"
    assert len(c) == 2
    assert c.size() == 9
    assert c.keys() == ["second", "foo8"]


def test_ttl():
    c = Cache(10, 0.1, 1)
    calls = []

    def loader():
        calls.append(1)
        return b"bar"

    assert c.get("foo", loader) == b"bar"
    assert len(calls) == 1
    assert c.get("foo", loader) == b"bar"
    assert len(calls) == 1
    time.sleep(0.15)
    assert c.get("foo", loader) == b"bar"
    assert len(calls) == 2


def test_clear():
    c = Cache(10, 0.1, 1)
    calls = []

    def loader():
        calls.append(1)
        return b"bar"

    assert c.get("foo", loader) == b"bar"
    c.clear()
    assert len(c) == 0
    assert c.size() == 0
    assert c.get("foo", loader) == b"bar"
    assert len(calls) == 2


def test_utilization():
    c = Cache(10, 60, 1)
    assert c.utilization() == 0
    c.get("k", lambda: b"v")
    c.get("k", lambda: b"v")
    assert c.utilization() == 50


def test_missing_loader_for_uncached_key():
    c = Cache(10, 60, 1)
    with pytest.raises(KeyError):
        c.get("absent", None)


def test_concurrent_get_loads_once():
    c = Cache(100, 60, 1)
    release = threading.Event()
    calls = []

    def loader():
        calls.append(1)
        release.wait(5)
        return b"data"

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(c.get("k", loader))) for _ in range(3)
    ]
    for t in threads:
        t.start()
    deadline = time.monotonic() + 5
    while c.loads_active() == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert c.loads_active() == 1
    release.set()
    for t in threads:
        t.join(5)
    assert results == [b"data"] * 3
    assert len(calls) == 1
    assert c.loads_active() == 0