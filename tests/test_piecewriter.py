import hashlib

from raintorrent.piece import FileSection, Piece
from raintorrent.piecewriter import PieceWriter
from raintorrent.semaphore import Semaphore


class MemoryFile:
    def __init__(self, size):
        self.data = bytearray(size)

    def read_at(self, size, offset):
        return bytes(self.data[offset : offset + size])

    def write_at(self, data, offset):
        self.data[offset : offset + len(data)] = data
        return len(data)


class BrokenFile:
    def write_at(self, data, offset):
        raise OSError("disk full")


def make_piece(content, file):
    return Piece(
        index=0,
        length=len(content),
        data=[FileSection(file=file, offset=0, length=len(content))],
        hash=hashlib.sha1(content).digest(),
    )


def test_good_hash_writes_data():
    content = b"piece data here"
    f = MemoryFile(len(content))
    sem = Semaphore(1)
    written = []
    w = PieceWriter(make_piece(content, f), "source", content)
    result = w.run(sem, written.append)
    assert result is w
    assert w.hash_ok is True
    assert w.error is None
    assert bytes(f.data) == content
    assert written == [len(content)]
    assert sem.active() == 0


def test_bad_hash_does_not_write():
    content = b"piece data here"
    f = MemoryFile(len(content))
    written = []
    other = b"x" * len(content)
    w = PieceWriter(make_piece(content, f), None, other)
    w.run(Semaphore(1), written.append)
    assert w.hash_ok is False
    assert bytes(f.data) == bytes(len(content))
    assert written == []


def test_wrong_length_fails_hash():
    content = b"abcdef"
    w = PieceWriter(make_piece(content, MemoryFile(6)), None, content[:3])
    w.run()
    assert w.hash_ok is False


def test_write_error_is_recorded():
    content = b"abcdef"
    sem = Semaphore(1)
    w = PieceWriter(make_piece(content, BrokenFile()), None, content)
    w.run(sem)
    assert w.hash_ok is True
    assert isinstance(w.error, OSError)
    assert sem.active() == 0


def test_source_is_kept():
    content = b"abc"
    marker = object()
    w = PieceWriter(make_piece(content, MemoryFile(3)), marker, content)
    assert w.run().source is marker