import threading

import pytest

from raintorrent.resourcemanager import ResourceManager, Stats


def test_resource_manager():
    m = ResourceManager(2)
    assert m.stats().allocated_objects == 0
    assert m.request("foo", "", 1, None, None) is True
    assert m.stats().allocated_objects == 1
    assert m.request("foo", "", 1, None, None) is True
    assert m.stats().allocated_objects == 2

    received = []
    assert m.request("foo", "bar", 1, received.append, None) is False
    assert m.stats().allocated_objects == 2
    assert m.stats().pending_keys == 1

    m.release(1)
    assert received == ["bar"]
    assert m.stats().allocated_objects == 2
    assert m.stats().pending_keys == 0


def test_allocated_size():
    m = ResourceManager(10)
    assert m.request("a", None, 4) is True
    assert m.request("b", None, 3) is True
    assert m.stats() == Stats(allocated_size=7, allocated_objects=2, pending_keys=0)


def test_negative_request_is_refused():
    m = ResourceManager(2)
    assert m.request("foo", "", -1) is False
    assert m.stats().allocated_objects == 0


def test_release_over_limit_raises():
    m = ResourceManager(2)
    with pytest.raises(ValueError):
        m.release(1)


def test_cancelled_request_is_not_granted():
    m = ResourceManager(1)
    assert m.request("foo", "", 1) is True
    cancel = threading.Event()
    received = []
    assert m.request("foo", "bar", 1, received.append, cancel) is False
    cancel.set()
    assert m.stats().pending_keys == 0
    m.release(1)
    assert received == []
    assert m.stats().allocated_objects == 0


def test_too_large_pending_request_waits():
    m = ResourceManager(2)
    assert m.request("foo", "", 2) is True
    received = []
    assert m.request("bar", "big", 2, received.append) is False
    m.release(1)
    assert received == []
    assert m.stats().pending_keys == 1


def test_closed_manager_refuses():
    m = ResourceManager(2)
    m.close()
    assert m.request("foo", "", 1) is False
    assert m.stats() == Stats()