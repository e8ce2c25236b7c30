import socket
import threading

import pytest

from raintorrent.peerprotocol import (
    CancelMessage,
    ChokeMessage,
    HaveMessage,
    RejectMessage,
    RequestMessage,
)
from raintorrent.peerreader import Piece as ReceivedPiece
from raintorrent.peerreader import read_message
from raintorrent.peerwriter import (
    BlockUploaded,
    Piece,
    PeerWriter,
    encode_message,
)


class BytesData:
    def __init__(self, data):
        self.data = data

    def read_at(self, size, offset):
        return self.data[offset : offset + size]


def test_piece_encode_reads_at_begin():
    p = Piece(BytesData(bytes(10)), index=0, begin=2, length=5)
    assert p.encode() == b"\x00\x00\x00\x00\x00\x00\x00\x02" + bytes(5)


def test_piece_encode_data_slice():
    p = Piece(BytesData(b"0123456789"), index=0, begin=2, length=5)
    assert p.encode()[8:] == b"23456"


def test_piece_short_data_raises():
    p = Piece(BytesData(b"0123"), index=0, begin=2, length=5)
    with pytest.raises(EOFError):
        p.encode()


def test_encode_message_framing():
    assert encode_message(HaveMessage(1)) == b"\x00\x00\x00\x05\x04\x00\x00\x00\x01"
    assert encode_message(ChokeMessage()) == b"\x00\x00\x00\x01\x00"


def _pair():
    a, b = socket.socketpair()
    return a, b


def test_queue_limit_drops_without_fast():
    a, b = _pair()
    try:
        w = PeerWriter(a, max_queued_requests=2, fast_enabled=False)
        data = BytesData(bytes(100))
        for begin in range(3):
            w.send_piece(RequestMessage(0, begin, 1), data)
        queued = w.queued()
        assert len(queued) == 2
        assert all(isinstance(m, Piece) for m in queued)
    finally:
        a.close()
        b.close()


def test_queue_limit_rejects_with_fast():
    a, b = _pair()
    try:
        w = PeerWriter(a, max_queued_requests=2, fast_enabled=True)
        data = BytesData(bytes(100))
        for begin in range(3):
            w.send_piece(RequestMessage(0, begin, 1), data)
        assert w.queued()[-1] == RejectMessage(0, 2, 1)
    finally:
        a.close()
        b.close()


def test_choke_cancels_queued_pieces():
    a, b = _pair()
    try:
        w = PeerWriter(a, max_queued_requests=2)
        data = BytesData(bytes(100))
        w.send_piece(RequestMessage(0, 0, 1), data)
        w.send_message(HaveMessage(3))
        w.send_piece(RequestMessage(0, 1, 1), data)
        w.send_message(ChokeMessage())
        assert w.queued() == [HaveMessage(3), ChokeMessage()]
        w.send_piece(RequestMessage(0, 2, 1), data)
        w.send_piece(RequestMessage(0, 3, 1), data)
        assert sum(isinstance(m, Piece) for m in w.queued()) == 2
    finally:
        a.close()
        b.close()


def test_cancel_request_removes_matching_piece():
    a, b = _pair()
    try:
        w = PeerWriter(a, max_queued_requests=4)
        data = BytesData(bytes(100))
        w.send_piece(RequestMessage(0, 0, 5), data)
        w.send_piece(RequestMessage(0, 5, 5), data)
        w.cancel_request(CancelMessage(0, 0, 5))
        queued = w.queued()
        assert len(queued) == 1
        assert queued[0].request == RequestMessage(0, 5, 5)
    finally:
        a.close()
        b.close()


def test_run_writes_messages_and_rejects_duplicates():
    a, b = _pair()
    b.settimeout(5)
    stream = b.makefile("rb")
    try:
        w = PeerWriter(a, max_queued_requests=4)
        data = BytesData(b"0123456789")
        w.send_message(HaveMessage(7))
        w.send_piece(RequestMessage(1, 2, 5), data)
        w.send_piece(RequestMessage(1, 2, 5), data)
        thread = threading.Thread(target=w.run)
        thread.start()
        assert read_message(stream) == HaveMessage(7)
        assert read_message(stream) == ReceivedPiece(1, 2, b"23456")
        assert read_message(stream) == RejectMessage(1, 2, 5)
        assert w.messages().get(timeout=5) == BlockUploaded(5)
        w.stop()
        thread.join(5)
        assert w.done().is_set()
        assert w.messages().empty()
    finally:
        stream.close()
        b.close()


def test_send_after_done_is_ignored():
    a, b = _pair()
    try:
        w = PeerWriter(a, max_queued_requests=4)
        w.stop()
        w.run()
        assert w.done().is_set()
        w.send_message(HaveMessage(1))
        assert w.queued() == []
    finally:
        b.close()