import pytest

from raintorrent.peersource import Source


@pytest.mark.parametrize(
    "source, text",
    [
        (Source.TRACKER, "tracker"),
        (Source.DHT, "dht"),
        (Source.PEX, "pex"),
        (Source.MANUAL, "manual"),
        (Source.INCOMING, "incoming"),
    ],
)
def test_str(source, text):
    assert str(source) == text


def test_values_follow_declaration_order():
    names = [str(Source(value)) for value in range(5)]
    assert names == ["tracker", "dht", "pex", "manual", "incoming"]


def test_lookup_by_value():
    assert Source(4) is Source.INCOMING


def test_unknown_value_raises():
    with pytest.raises(ValueError):
        Source(len(Source))