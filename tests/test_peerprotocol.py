import struct

import pytest

from raintorrent.peerprotocol import (
    AllowedFastMessage,
    BencodeError,
    BitfieldMessage,
    CancelMessage,
    ChokeMessage,
    ExtensionHandshakeMessage,
    ExtensionMessage,
    ExtensionMetadataMessage,
    ExtensionPEXMessage,
    HaveAllMessage,
    HaveMessage,
    HaveNoneMessage,
    InterestedMessage,
    MessageID,
    NotInterestedMessage,
    PieceMessage,
    PortMessage,
    RejectMessage,
    RequestMessage,
    UnchokeMessage,
    bdecode,
    bencode,
    new_extension_handshake,
)


@pytest.mark.parametrize(
    "mid, text",
    [
        (MessageID.CHOKE, "choke"),
        (MessageID.NOT_INTERESTED, "not interested"),
        (MessageID.HAVE_ALL, "have all"),
        (MessageID.ALLOWED_FAST, "allowed fast"),
        (MessageID.EXTENSION, "extension"),
    ],
)
def test_message_id_strings(mid, text):
    assert str(mid) == text


def test_message_id_values():
    assert MessageID.SUGGEST == 13
    assert MessageID.EXTENSION == 20
    assert MessageID(5) is MessageID.BITFIELD


def test_message_class_ids():
    assert AllowedFastMessage(1).id == MessageID.ALLOWED_FAST
    assert RejectMessage(1, 2, 3).id == MessageID.REJECT
    assert CancelMessage(1, 2, 3).id == MessageID.CANCEL
    assert ExtensionMessage(0, {}).id == MessageID.EXTENSION


def test_have_encode():
    assert HaveMessage(1).encode() == b"\x00\x00\x00\x01"
    assert AllowedFastMessage(1).encode() == HaveMessage(1).encode()


def test_block_messages_share_layout():
    encoded = RequestMessage(1, 2, 3).encode()
    assert struct.unpack(">III", encoded) == (1, 2, 3)
    assert CancelMessage(1, 2, 3).encode() == encoded
    assert RejectMessage(1, 2, 3).encode() == encoded
    assert CancelMessage(1, 2, 3).request == RequestMessage(1, 2, 3)


def test_distinct_message_types_not_equal():
    assert RequestMessage(1, 2, 3) != CancelMessage(1, 2, 3)
    assert HaveMessage(4) != AllowedFastMessage(4)


def test_piece_header():
    assert struct.unpack(">II", PieceMessage(7, 16384).encode()) == (7, 16384)


@pytest.mark.parametrize(
    "msg",
    [
        ChokeMessage(),
        UnchokeMessage(),
        InterestedMessage(),
        NotInterestedMessage(),
        HaveAllMessage(),
        HaveNoneMessage(),
    ],
)
def test_empty_messages(msg):
    assert msg.encode() == b""


def test_port_encode():
    assert PortMessage(6881).encode() == b"\x1a\xe1"


def test_bitfield_encode():
    assert BitfieldMessage(b"\xff\x80").encode() == b"\xff\x80"


def test_out_of_range_values():
    with pytest.raises(ValueError):
        HaveMessage(-1)
    with pytest.raises(ValueError):
        PortMessage(70000)
    with pytest.raises(ValueError):
        RequestMessage(0, 0, 1 << 32)


def test_bencode_pinned():
    assert bencode({"a": 1}) == b"d1:ai1ee"


def test_bencode_sorts_keys():
    assert bencode({"b": 1, "a": 2}) == bencode({"a": 2, "b": 1})


def test_bencode_roundtrip():
    value = {"list": [1, b"x", {"k": -3}], "s": "str"}
    assert bdecode(bencode(value)) == {b"list": [1, b"x", {b"k": -3}], b"s": b"str"}


def test_bencode_rejects_unsupported():
    with pytest.raises(BencodeError):
        bencode(1.5)
    with pytest.raises(BencodeError):
        bencode({1: 2})


@pytest.mark.parametrize("data", [b"i12", b"5:ab", b"l", b"i1ei2e", b"x", b"di1ei2ee", b""])
def test_bdecode_errors(data):
    with pytest.raises(BencodeError):
        bdecode(data)


def test_new_extension_handshake():
    hs = new_extension_handshake(100, "rain", "1.2.3.4", 250)
    assert hs.m == {"ut_metadata": 1, "ut_pex": 2}
    assert hs.your_ip == bytes([1, 2, 3, 4])
    assert hs.metadata_size == 100
    assert hs.request_queue == 250


def test_handshake_mapped_ipv6_truncated():
    hs = new_extension_handshake(0, "v", "::ffff:1.2.3.4", 1)
    assert hs.your_ip == bytes([1, 2, 3, 4])
    assert len(new_extension_handshake(0, "v", "2001:db8::1", 1).your_ip) == 16
    assert new_extension_handshake(0, "v", None, 1).your_ip == b""


def test_handshake_roundtrip():
    hs = new_extension_handshake(1234, "rain", "10.0.0.1", 250)
    msg = ExtensionMessage(0, hs)
    encoded = msg.encode()
    assert encoded[0] == 0
    assert ExtensionMessage.from_bytes(encoded) == msg


def test_handshake_omits_empty_fields():
    d = ExtensionHandshakeMessage(m={"ut_pex": 2}, v="x").to_dict()
    assert "yourip" not in d
    assert "metadata_size" not in d
    assert d["reqq"] == 0


def test_handshake_negative_values_clamped():
    raw = bytes([0]) + bencode({"m": {}, "metadata_size": -5, "reqq": -1})
    msg = ExtensionMessage.from_bytes(raw)
    assert msg.payload.metadata_size == 0
    assert msg.payload.request_queue == 0


def test_metadata_roundtrip_with_data():
    payload = ExtensionMetadataMessage(type=1, piece=3, total_size=5, data=b"hello")
    msg = ExtensionMessage(1, payload)
    decoded = ExtensionMessage.from_bytes(msg.encode())
    assert decoded == msg
    assert decoded.payload.data == b"hello"


def test_pex_roundtrip():
    msg = ExtensionMessage(2, ExtensionPEXMessage(added=b"\x01\x02\x03\x04\x00\x01", dropped=b""))
    encoded = msg.encode()
    assert encoded[0] == 2
    assert ExtensionMessage.from_bytes(encoded) == msg


def test_from_bytes_errors():
    with pytest.raises(ValueError):
        ExtensionMessage.from_bytes(b"")
    with pytest.raises(ValueError, match="invalid extension message id"):
        ExtensionMessage.from_bytes(bytes([9]) + bencode({}))
    with pytest.raises(BencodeError):
        ExtensionMessage.from_bytes(bytes([2]) + bencode([1]))
    with pytest.raises(BencodeError):
        ExtensionMessage.from_bytes(bytes([0]) + bencode({"m": {"ut_pex": 300}}))