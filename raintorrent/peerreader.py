"""Reading and parsing peer wire messages from a connection."""

from __future__ import annotations

import logging
import queue
import socket
import struct
import threading
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, ClassVar, Dict, Optional, Type

from raintorrent.peerprotocol import (
    AllowedFastMessage,
    BitfieldMessage,
    CancelMessage,
    ChokeMessage,
    ExtensionMessage,
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
)
from raintorrent.piece import BLOCK_SIZE

# Largest block allowed in "request" messages.
MAX_BLOCK_SIZE = 16 * 1024
# A peer must send something (at least keep-alives) within this many seconds.
READ_TIMEOUT = 120.0

_DISCARD_CHUNK = 64 * 1024

_log = logging.getLogger(__name__)

ReadExact = Callable[[int], bytes]


@dataclass(frozen=True)
class Piece:
    """A piece message read from a peer, with its block data."""

    index: int
    begin: int
    buffer: bytes
    id: ClassVar[MessageID] = MessageID.PIECE

    @property
    def message(self) -> PieceMessage:
        return PieceMessage(self.index, self.begin)


class BlockSizeError(ValueError):
    """A message carried a block larger than allowed."""

    def __init__(self, message_id: Any, got: int, allowed_max: int) -> None:
        self.message_id = message_id
        self.got = got
        self.allowed_max = allowed_max
        super().__init__(
            f"received {message_id} message with block size larger than allowed "
            f"({got} > {allowed_max})"
        )


class _Stopped(Exception):
    """The reader was stopped while waiting."""


_EMPTY_MESSAGES: Dict[int, Type[Any]] = {
    MessageID.CHOKE: ChokeMessage,
    MessageID.UNCHOKE: UnchokeMessage,
    MessageID.INTERESTED: InterestedMessage,
    MessageID.NOT_INTERESTED: NotInterestedMessage,
    MessageID.HAVE_ALL: HaveAllMessage,
    MessageID.HAVE_NONE: HaveNoneMessage,
}

_BLOCK_MESSAGES: Dict[int, Type[Any]] = {
    MessageID.REQUEST: RequestMessage,
    MessageID.REJECT: RejectMessage,
    MessageID.CANCEL: CancelMessage,
}


def _parse_body(
    msg_id: int, length: int, read_exact: ReadExact, read_piece: ReadExact
) -> Optional[Any]:
    """Read the body of a message whose id byte has been consumed.

    Returns None for message types that are not handled; their bodies are skipped.
    """
    if msg_id in _EMPTY_MESSAGES:
        return _EMPTY_MESSAGES[msg_id]()
    if msg_id in (MessageID.HAVE, MessageID.ALLOWED_FAST):
        (index,) = struct.unpack(">I", read_exact(4))
        cls = HaveMessage if msg_id == MessageID.HAVE else AllowedFastMessage
        return cls(index)
    if msg_id in _BLOCK_MESSAGES:
        index, begin, block_length = struct.unpack(">III", read_exact(12))
        if msg_id == MessageID.REQUEST and block_length > MAX_BLOCK_SIZE:
            raise BlockSizeError(MessageID.REQUEST, block_length, MAX_BLOCK_SIZE)
        return _BLOCK_MESSAGES[msg_id](index, begin, block_length)
    if msg_id == MessageID.BITFIELD:
        return BitfieldMessage(read_exact(length))
    if msg_id == MessageID.PIECE:
        index, begin = struct.unpack(">II", read_exact(8))
        data_length = (length - 8) & 0xFFFFFFFF
        if data_length > BLOCK_SIZE:
            raise BlockSizeError(MessageID.PIECE, data_length, BLOCK_SIZE)
        return Piece(index, begin, read_piece(data_length))
    if msg_id == MessageID.PORT:
        (port,) = struct.unpack(">H", read_exact(2))
        return PortMessage(port)
    if msg_id == MessageID.EXTENSION:
        return ExtensionMessage.from_bytes(read_exact(length)).payload
    _log.debug("unhandled message type: %s, discarding %d bytes", msg_id, length)
    while length > 0:
        chunk = min(length, _DISCARD_CHUNK)
        read_exact(chunk)
        length -= chunk
    return None


def _stream_read_exact(stream: BinaryIO) -> ReadExact:
    def read_exact(n: int) -> bytes:
        data = bytearray()
        while len(data) < n:
            chunk = stream.read(n - len(data))
            if not chunk:
                raise EOFError("EOF" if not data else "unexpected EOF")
            data += chunk
        return bytes(data)

    return read_exact


def read_message(stream: BinaryIO) -> Optional[Any]:
    """Read one framed message from a binary stream.

    Returns None for keep-alive messages and for unhandled message types.
    Raises EOFError if the stream ends, BlockSizeError for oversized blocks.
    """
    read_exact = _stream_read_exact(stream)
    (length,) = struct.unpack(">I", read_exact(4))
    if length == 0:
        return None
    msg_id = read_exact(1)[0]
    return _parse_body(msg_id, length - 1, read_exact, read_exact)


class PeerReader:
    """Reads messages from a socket in a loop and puts them on a queue.

    ``bucket``, if given, rate-limits piece data: its ``take(n)`` returns the
    number of seconds to wait before reading ``n`` bytes.
    """

    def __init__(self, conn: socket.socket, piece_timeout: float = 30.0, bucket: Any = None) -> None:
        self._conn = conn
        self._piece_timeout = piece_timeout
        self._bucket = bucket
        self._messages: "queue.Queue[Any]" = queue.Queue()
        self._stop = threading.Event()
        self._done = threading.Event()
        self.error: Optional[BaseException] = None

    def messages(self) -> "queue.Queue[Any]":
        """Queue that receives every message read."""
        return self._messages

    def stop(self) -> None:
        """Ask the read loop to end."""
        self._stop.set()

    def done(self) -> threading.Event:
        """Event that is set when the read loop has ended."""
        return self._done

    def _fill(self, buf: bytearray, n: int, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while len(buf) < n:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout("read timed out")
            self._conn.settimeout(remaining)
            chunk = self._conn.recv(n - len(buf))
            if not chunk:
                raise EOFError("EOF" if not buf else "unexpected EOF")
            buf += chunk

    def _recv(self, n: int) -> bytes:
        buf = bytearray()
        self._fill(buf, n, READ_TIMEOUT)
        return bytes(buf)

    def _read_piece(self, length: int) -> bytes:
        buf = bytearray()
        while True:
            if self._bucket is not None:
                if self._stop.wait(self._bucket.take(length)):
                    raise _Stopped
            before = len(buf)
            try:
                self._fill(buf, length, self._piece_timeout)
                return bytes(buf)
            except socket.timeout:
                # A slow peer that sent something is given more time.
                if len(buf) > before:
                    continue
                raise

    def run(self) -> None:
        """Read messages until the connection ends or the reader is stopped."""
        try:
            while not self._stop.is_set():
                (length,) = struct.unpack(">I", self._recv(4))
                if length == 0:
                    _log.debug('Received message of type "keep alive"')
                    continue
                msg_id = self._recv(1)[0]
                msg = _parse_body(msg_id, length - 1, self._recv, self._read_piece)
                if msg is None:
                    continue
                if self._stop.is_set():
                    return
                self._messages.put(msg)
        except _Stopped:
            pass
        except (EOFError, OSError) as exc:
            self.error = exc
        except BlockSizeError as exc:
            self.error = exc
            if not self._stop.is_set():
                _log.debug("%s", exc)
        except Exception as exc:
            self.error = exc
            if not self._stop.is_set():
                _log.error("%s", exc)
        finally:
            self._done.set()