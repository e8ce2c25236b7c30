"""BitTorrent peer wire messages, the extension protocol and bencoding."""

from __future__ import annotations

import enum
import ipaddress
import re
import struct
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

EXTENSION_ID_HANDSHAKE = 0
EXTENSION_ID_METADATA = 1
EXTENSION_ID_PEX = 2

EXTENSION_KEY_METADATA = "ut_metadata"
EXTENSION_KEY_PEX = "ut_pex"

METADATA_MESSAGE_TYPE_REQUEST = 0
METADATA_MESSAGE_TYPE_DATA = 1
METADATA_MESSAGE_TYPE_REJECT = 2


class BencodeError(ValueError):
    """Data could not be bencoded or bdecoded."""


def bencode(value: Any) -> bytes:
    """Bencode ints, strings, bytes, lists and dicts (keys sorted as bytes)."""
    out = bytearray()
    _encode(value, out)
    return bytes(out)


def _encode(value: Any, out: bytearray) -> None:
    if isinstance(value, int):
        out += b"i%de" % value
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        out += b"%d:" % len(raw)
        out += raw
    elif isinstance(value, str):
        _encode(value.encode("utf-8"), out)
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode(item, out)
        out += b"e"
    elif isinstance(value, Mapping):
        items = []
        for key, item in value.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif isinstance(key, (bytes, bytearray)):
                key = bytes(key)
            else:
                raise BencodeError(f"dictionary key must be a string, not {type(key).__name__}")
            items.append((key, item))
        items.sort(key=lambda pair: pair[0])
        out += b"d"
        for key, item in items:
            _encode(key, out)
            _encode(item, out)
        out += b"e"
    else:
        raise BencodeError(f"cannot bencode value of type {type(value).__name__}")


_INT_RE = re.compile(rb"i(-?[0-9]+)e")
_LEN_RE = re.compile(rb"([0-9]+):")


def _decode(data: bytes, pos: int) -> Tuple[Any, int]:
    if pos >= len(data):
        raise BencodeError("unexpected end of data")
    lead = data[pos : pos + 1]
    if lead == b"i":
        match = _INT_RE.match(data, pos)
        if match is None:
            raise BencodeError(f"invalid integer at offset {pos}")
        return int(match.group(1)), match.end()
    if lead == b"l":
        pos += 1
        items = []
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated list")
            if data[pos : pos + 1] == b"e":
                return items, pos + 1
            item, pos = _decode(data, pos)
            items.append(item)
    if lead == b"d":
        pos += 1
        result: Dict[bytes, Any] = {}
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated dictionary")
            if data[pos : pos + 1] == b"e":
                return result, pos + 1
            key, pos = _decode(data, pos)
            if not isinstance(key, bytes):
                raise BencodeError("dictionary key is not a string")
            result[key], pos = _decode(data, pos)
    match = _LEN_RE.match(data, pos)
    if match is None:
        raise BencodeError(f"invalid value at offset {pos}")
    start = match.end()
    end = start + int(match.group(1))
    if end > len(data):
        raise BencodeError("string is longer than the data")
    return data[start:end], end


def _decode_prefix(data: bytes) -> Tuple[Any, int]:
    """Decode the first value in ``data``; return it and the bytes consumed."""
    try:
        return _decode(bytes(data), 0)
    except RecursionError as exc:
        raise BencodeError("value is nested too deeply") from exc


def bdecode(data: bytes) -> Any:
    """Decode exactly one bencoded value. Strings and keys come back as bytes."""
    value, end = _decode_prefix(data)
    if end != len(data):
        raise BencodeError("trailing data after bencoded value")
    return value


class MessageID(enum.IntEnum):
    """Identifier of a peer wire message."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8
    PORT = 9
    SUGGEST = 13
    HAVE_ALL = 14
    HAVE_NONE = 15
    REJECT = 16
    ALLOWED_FAST = 17
    EXTENSION = 20

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")


def _check_uint(value: int, bits: int, name: str) -> None:
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{name} out of range for uint{bits}: {value}")


_EMPTY_PAYLOAD = b""


@dataclass(frozen=True)
class _IndexMessage:
    index: int

    def __post_init__(self) -> None:
        _check_uint(self.index, 32, "index")


@dataclass(frozen=True)
class HaveMessage(_IndexMessage):
    """The peer has the piece with ``index``."""

    id: ClassVar[MessageID] = MessageID.HAVE

    def encode(self) -> bytes:
        return struct.pack(">I", self.index)


@dataclass(frozen=True)
class AllowedFastMessage(_IndexMessage):
    """The piece may be requested regardless of choking."""

    id: ClassVar[MessageID] = MessageID.ALLOWED_FAST

    def encode(self) -> bytes:
        return struct.pack(">I", self.index)


@dataclass(frozen=True)
class _BlockMessage:
    index: int
    begin: int
    length: int

    def __post_init__(self) -> None:
        _check_uint(self.index, 32, "index")
        _check_uint(self.begin, 32, "begin")
        _check_uint(self.length, 32, "length")

    def encode(self) -> bytes:
        return struct.pack(">III", self.index, self.begin, self.length)

    @property
    def request(self) -> "RequestMessage":
        return RequestMessage(self.index, self.begin, self.length)


@dataclass(frozen=True)
class RequestMessage(_BlockMessage):
    """Request for a block of a piece."""

    id: ClassVar[MessageID] = MessageID.REQUEST

    def encode(self) -> bytes:
        return struct.pack(">III", self.index, self.begin, self.length)


@dataclass(frozen=True)
class RejectMessage(_BlockMessage):
    """A request from the peer is rejected."""

    id: ClassVar[MessageID] = MessageID.REJECT


@dataclass(frozen=True)
class CancelMessage(_BlockMessage):
    """Cancels a previously sent request."""

    id: ClassVar[MessageID] = MessageID.CANCEL


@dataclass(frozen=True)
class PieceMessage:
    """Header of a piece message; block data follows it on the wire."""

    index: int
    begin: int
    id: ClassVar[MessageID] = MessageID.PIECE

    def __post_init__(self) -> None:
        _check_uint(self.index, 32, "index")
        _check_uint(self.begin, 32, "begin")

    def encode(self) -> bytes:
        return struct.pack(">II", self.index, self.begin)


@dataclass(frozen=True)
class BitfieldMessage:
    """Piece availability sent after the handshake."""

    data: bytes = b""
    id: ClassVar[MessageID] = MessageID.BITFIELD

    def encode(self) -> bytes:
        return bytes(self.data)


@dataclass(frozen=True)
class PortMessage:
    """UDP port of the peer's DHT node."""

    port: int
    id: ClassVar[MessageID] = MessageID.PORT

    def __post_init__(self) -> None:
        _check_uint(self.port, 16, "port")

    def encode(self) -> bytes:
        return struct.pack(">H", self.port)


@dataclass(frozen=True)
class ChokeMessage:
    """The peer must not request pieces."""

    id: ClassVar[MessageID] = MessageID.CHOKE

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


@dataclass(frozen=True)
class UnchokeMessage:
    """The peer may request pieces."""

    id: ClassVar[MessageID] = MessageID.UNCHOKE

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


@dataclass(frozen=True)
class InterestedMessage:
    """We want to request pieces once unchoked."""

    id: ClassVar[MessageID] = MessageID.INTERESTED

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


@dataclass(frozen=True)
class NotInterestedMessage:
    """We do not want any pieces from the peer."""

    id: ClassVar[MessageID] = MessageID.NOT_INTERESTED

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


@dataclass(frozen=True)
class HaveAllMessage:
    """We are a seed for this torrent."""

    id: ClassVar[MessageID] = MessageID.HAVE_ALL

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


@dataclass(frozen=True)
class HaveNoneMessage:
    """We have no pieces."""

    id: ClassVar[MessageID] = MessageID.HAVE_NONE

    def encode(self) -> bytes:
        return _EMPTY_PAYLOAD


def _fields(d: Mapping[Any, Any]) -> Dict[str, Any]:
    return {
        (key.decode("utf-8", "replace") if isinstance(key, (bytes, bytearray)) else str(key)): value
        for key, value in d.items()
    }


def _as_int(value: Any, name: str, low: Optional[int] = None, high: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise BencodeError(f"field {name!r} is not an integer")
    if (low is not None and value < low) or (high is not None and value > high):
        raise BencodeError(f"field {name!r} out of range: {value}")
    return value


def _bytes_field(d: Mapping[str, Any], key: str) -> bytes:
    value = d.get(key, b"")
    if isinstance(value, str):
        return value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise BencodeError(f"field {key!r} is not a string")
    return bytes(value)


@dataclass
class ExtensionHandshakeMessage:
    """Extension handshake (BEP 10)."""

    m: Dict[str, int] = field(default_factory=dict)
    v: str = ""
    your_ip: bytes = b""
    metadata_size: int = 0
    request_queue: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"m": dict(self.m), "v": self.v, "reqq": self.request_queue}
        if self.your_ip:
            d["yourip"] = bytes(self.your_ip)
        if self.metadata_size:
            d["metadata_size"] = self.metadata_size
        return d

    @classmethod
    def from_dict(cls, d: Mapping[Any, Any]) -> "ExtensionHandshakeMessage":
        fields = _fields(d)
        raw_m = fields.get("m", {})
        if not isinstance(raw_m, Mapping):
            raise BencodeError("field 'm' is not a dictionary")
        m = {key: _as_int(value, key, 0, 255) for key, value in _fields(raw_m).items()}
        version = _bytes_field(fields, "v").decode("utf-8", "replace")
        return cls(
            m=m,
            v=version,
            your_ip=_bytes_field(fields, "yourip"),
            metadata_size=max(0, _as_int(fields.get("metadata_size", 0), "metadata_size")),
            request_queue=max(0, _as_int(fields.get("reqq", 0), "reqq")),
        )


@dataclass
class ExtensionMetadataMessage:
    """Metadata exchange message (BEP 9); ``data`` follows the dictionary."""

    type: int = METADATA_MESSAGE_TYPE_REQUEST
    piece: int = 0
    total_size: int = 0
    data: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"msg_type": self.type, "piece": self.piece}
        if self.total_size:
            d["total_size"] = self.total_size
        return d

    @classmethod
    def from_dict(cls, d: Mapping[Any, Any]) -> "ExtensionMetadataMessage":
        fields = _fields(d)
        return cls(
            type=_as_int(fields.get("msg_type", 0), "msg_type"),
            piece=_as_int(fields.get("piece", 0), "piece", 0, 0xFFFFFFFF),
            total_size=_as_int(fields.get("total_size", 0), "total_size"),
        )


@dataclass
class ExtensionPEXMessage:
    """Peer exchange message (BEP 11) with compact peer lists."""

    added: bytes = b""
    dropped: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"added": bytes(self.added), "dropped": bytes(self.dropped)}

    @classmethod
    def from_dict(cls, d: Mapping[Any, Any]) -> "ExtensionPEXMessage":
        fields = _fields(d)
        return cls(added=_bytes_field(fields, "added"), dropped=_bytes_field(fields, "dropped"))


ExtensionPayload = Union[ExtensionHandshakeMessage, ExtensionMetadataMessage, ExtensionPEXMessage]

_PAYLOAD_TYPES = {
    EXTENSION_ID_HANDSHAKE: ExtensionHandshakeMessage,
    EXTENSION_ID_METADATA: ExtensionMetadataMessage,
    EXTENSION_ID_PEX: ExtensionPEXMessage,
}


@dataclass
class ExtensionMessage:
    """Extension protocol message carrying a bencoded payload."""

    extended_message_id: int
    payload: Any
    id: ClassVar[MessageID] = MessageID.EXTENSION

    def encode(self) -> bytes:
        _check_uint(self.extended_message_id, 8, "extended message id")
        if isinstance(self.payload, (ExtensionHandshakeMessage, ExtensionMetadataMessage, ExtensionPEXMessage)):
            body = bencode(self.payload.to_dict())
        else:
            body = bencode(self.payload)
        out = bytes([self.extended_message_id]) + body
        if isinstance(self.payload, ExtensionMetadataMessage):
            out += bytes(self.payload.data)
        return out

    @classmethod
    def from_bytes(cls, data: bytes) -> "ExtensionMessage":
        """Parse an extension message received from a peer."""
        if not data:
            raise ValueError("extension message is empty")
        ext_id = data[0]
        payload = bytes(data[1:])
        payload_type = _PAYLOAD_TYPES.get(ext_id)
        if payload_type is None:
            raise ValueError(f"peer sent invalid extension message id: {ext_id}")
        value, consumed = _decode_prefix(payload)
        if not isinstance(value, dict):
            raise BencodeError("extension payload is not a dictionary")
        message = payload_type.from_dict(value)
        if isinstance(message, ExtensionMetadataMessage):
            message.data = payload[consumed:]
        return cls(ext_id, message)


_V4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"


def _truncate_ip(ip: Any) -> bytes:
    if ip is None:
        return b""
    if isinstance(ip, (bytes, bytearray)):
        raw = bytes(ip)
        if len(raw) == 16 and raw.startswith(_V4_MAPPED_PREFIX):
            return raw[12:]
        return raw
    addr = ipaddress.ip_address(str(ip))
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped.packed
    return addr.packed


def new_extension_handshake(
    metadata_size: int, version: str, your_ip: Any, request_queue_length: int
) -> ExtensionHandshakeMessage:
    """Build the extension handshake advertising metadata and PEX support."""
    return ExtensionHandshakeMessage(
        m={EXTENSION_KEY_METADATA: EXTENSION_ID_METADATA, EXTENSION_KEY_PEX: EXTENSION_ID_PEX},
        v=version,
        your_ip=_truncate_ip(your_ip),
        metadata_size=metadata_size,
        request_queue=request_queue_length,
    )


Message = Union[
    HaveMessage,
    AllowedFastMessage,
    RequestMessage,
    RejectMessage,
    CancelMessage,
    PieceMessage,
    BitfieldMessage,
    PortMessage,
    ChokeMessage,
    UnchokeMessage,
    InterestedMessage,
    NotInterestedMessage,
    HaveAllMessage,
    HaveNoneMessage,
    ExtensionMessage,
]