from raintorrent.sliceset import SliceSet


def test_add_and_has():
    s = SliceSet()
    a = object()
    assert s.add(a) is True
    assert s.has(a)
    assert a in s
    assert len(s) == 1


def test_add_duplicate_returns_false():
    s = SliceSet()
    a = object()
    s.add(a)
    assert s.add(a) is False
    assert len(s) == 1


def test_identity_not_equality():
    s = SliceSet()
    first = [1]
    second = [1]
    s.add(first)
    assert second not in s
    assert s.add(second) is True
    assert len(s) == 2


def test_remove_swaps_last_into_place():
    s = SliceSet()
    a, b, c = object(), object(), object()
    for item in (a, b, c):
        s.add(item)
    assert s.remove(a) is True
    assert s.items == [c, b]
    assert a not in s


def test_remove_missing():
    s = SliceSet()
    s.add(object())
    assert s.remove(object()) is False
    assert len(s) == 1


def test_iteration():
    s = SliceSet()
    a, b = object(), object()
    s.add(a)
    s.add(b)
    assert list(s) == [a, b]