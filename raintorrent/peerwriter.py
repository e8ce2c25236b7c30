"""Writing peer wire messages to a connection."""

from __future__ import annotations

import logging
import queue
import socket
import struct
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, ClassVar, Deque, List, Optional, Set

from raintorrent.peerprotocol import (
    CancelMessage,
    ChokeMessage,
    MessageID,
    RejectMessage,
    RequestMessage,
)

KEEP_ALIVE_PERIOD = 120.0
# length prefix + message id + piece header
_PIECE_OVERHEAD = 13
_KEEP_ALIVE = b"\x00\x00\x00\x00"

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockUploaded:
    """A block of ``length`` bytes was sent to the peer."""

    length: int


@dataclass(frozen=True, eq=False)
class Piece:
    """A piece message whose data is read only when it is sent.

    ``data`` must provide ``read_at(size, offset)``.
    """

    data: Any
    index: int
    begin: int
    length: int
    id: ClassVar[MessageID] = MessageID.PIECE

    @property
    def request(self) -> RequestMessage:
        return RequestMessage(self.index, self.begin, self.length)

    def encode(self) -> bytes:
        block = bytes(self.data.read_at(self.length, self.begin))
        if len(block) != self.length:
            raise EOFError(f"short read of piece data: {len(block)} < {self.length}")
        return struct.pack(">II", self.index, self.begin) + block


def encode_message(msg: Any) -> bytes:
    """Frame a message: big-endian length, message id, payload."""
    payload = msg.encode()
    return struct.pack(">IB", len(payload) + 1, int(msg.id)) + payload


class PeerWriter:
    """Queues messages and writes them to a socket from a loop.

    ``bucket``, if given, rate-limits piece uploads: its ``take(n)`` returns
    the number of seconds to wait before sending ``n`` bytes.
    """

    def __init__(
        self,
        conn: socket.socket,
        max_queued_requests: int,
        fast_enabled: bool = False,
        bucket: Any = None,
    ) -> None:
        self._conn = conn
        self._max_queued_requests = max_queued_requests
        self._fast_enabled = fast_enabled
        self._bucket = bucket
        self._queue: Deque[Any] = deque()
        self._queued_requests = 0
        self._served: Set[RequestMessage] = set()
        self._cond = threading.Condition()
        self._messages: "queue.Queue[BlockUploaded]" = queue.Queue()
        self._stop = threading.Event()
        self._done = threading.Event()

    def messages(self) -> "queue.Queue[BlockUploaded]":
        """Queue of events from the writer, such as BlockUploaded."""
        return self._messages

    def send_message(self, msg: Any) -> None:
        """Queue a message for sending. Does nothing once the writer has ended."""
        with self._cond:
            if self._done.is_set():
                return
            self._queue_message(msg)
            self._cond.notify_all()

    def send_piece(self, msg: RequestMessage, data: Any) -> None:
        """Queue a piece answering ``msg``; the data is read when it is sent."""
        self.send_message(Piece(data, msg.index, msg.begin, msg.length))

    def cancel_request(self, msg: CancelMessage) -> None:
        """Remove a queued piece that matches the cancelled request."""
        with self._cond:
            for item in self._queue:
                if (
                    isinstance(item, Piece)
                    and item.index == msg.index
                    and item.begin == msg.begin
                    and item.length == msg.length
                ):
                    self._queue.remove(item)
                    self._queued_requests -= 1
                    break

    def queued(self) -> List[Any]:
        """Messages waiting to be written, in order."""
        with self._cond:
            return list(self._queue)

    def stop(self) -> None:
        """Ask the write loop to end."""
        self._stop.set()
        with self._cond:
            self._cond.notify_all()

    def done(self) -> threading.Event:
        """Event that is set when the write loop has ended."""
        return self._done

    def _queue_message(self, msg: Any) -> None:
        if isinstance(msg, ChokeMessage):
            kept = deque(m for m in self._queue if not isinstance(m, Piece))
            self._queued_requests -= len(self._queue) - len(kept)
            self._queue = kept
        elif isinstance(msg, Piece):
            if self._queued_requests >= self._max_queued_requests:
                if not self._fast_enabled:
                    return
                msg = RejectMessage(msg.index, msg.begin, msg.length)
            else:
                self._queued_requests += 1
        self._queue.append(msg)

    def run(self) -> None:
        """Write queued messages and keep-alives until stopped or an error occurs."""
        try:
            try:
                self._conn.settimeout(None)
            except OSError as exc:
                _log.debug("cannot set deadline: %s", exc)
                return
            interval = KEEP_ALIVE_PERIOD / 2
            next_keep_alive = time.monotonic() + interval
            while True:
                with self._cond:
                    self._cond.wait_for(
                        lambda: self._stop.is_set() or bool(self._queue),
                        timeout=max(0.0, next_keep_alive - time.monotonic()),
                    )
                    if self._stop.is_set():
                        return
                    msg: Optional[Any] = self._queue.popleft() if self._queue else None
                    if isinstance(msg, Piece):
                        self._queued_requests -= 1
                if time.monotonic() >= next_keep_alive:
                    try:
                        self._conn.sendall(_KEEP_ALIVE)
                    except OSError as exc:
                        _log.debug("cannot write keepalive message: %s", exc)
                        return
                    next_keep_alive = time.monotonic() + interval
                if msg is not None and not self._write_message(msg):
                    return
        finally:
            try:
                self._conn.close()
            except OSError:
                pass
            with self._cond:
                self._done.set()

    def _write_message(self, msg: Any) -> bool:
        if isinstance(msg, Piece):
            request = msg.request
            if request in self._served:
                msg = RejectMessage(msg.index, msg.begin, msg.length)
            else:
                self._served.add(request)
        try:
            frame = encode_message(msg)
        except Exception as exc:
            if not self._stop.is_set():
                _log.error("cannot serialize message [%s]: %s", msg.id, exc)
            return False
        is_piece = isinstance(msg, Piece)
        if is_piece and self._bucket is not None:
            if self._stop.wait(self._bucket.take(len(frame))):
                return False
        try:
            self._conn.sendall(frame)
        except OSError as exc:
            _log.debug("cannot write message [%s]: %s", msg.id, exc)
            return False
        if is_piece:
            uploaded = len(frame) - _PIECE_OVERHEAD
            if uploaded > 0:
                self._messages.put(BlockUploaded(uploaded))
        return True