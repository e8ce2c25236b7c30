"""Pieces of a torrent and the blocks they are downloaded in."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

# Size of the smallest unit of piece data requested from peers.
BLOCK_SIZE = 16 * 1024


@dataclass
class FileSection:
    """A contiguous region of one file that belongs to a piece."""

    file: Any = None
    offset: int = 0
    length: int = 0
    name: str = ""
    padding: bool = False

    def _read(self, size: int, offset: int) -> bytes:
        if self.padding:
            return bytes(size)
        return self.file.read_at(size, self.offset + offset)

    def read(self) -> bytes:
        """Read the whole section; padding sections read as zeros."""
        return self._read(self.length, 0)

    def write(self, data: bytes) -> int:
        """Write ``data`` over the whole section."""
        if len(data) != self.length:
            raise ValueError(
                f"data length {len(data)} does not match section length {self.length}"
            )
        if self.padding:
            raise RuntimeError("attempt to write padding file")
        return self.file.write_at(bytes(data), self.offset)


@dataclass
class FileEntry:
    """A file of a torrent as used for mapping files to pieces."""

    name: str
    length: int
    storage: Any = None
    padding: bool = False


@dataclass(frozen=True)
class Block:
    """Part of a piece that is requested with a single request message."""

    begin: int
    length: int


@dataclass(eq=False)
class Piece:
    """A piece of a torrent."""

    index: int = 0
    length: int = 0
    data: List[FileSection] = field(default_factory=list)
    hash: bytes = b""
    writing: bool = False
    done: bool = False

    def num_blocks(self) -> int:
        """Number of blocks, assuming the piece contains no padding."""
        div, mod = divmod(self.length, BLOCK_SIZE)
        return div + 1 if mod else div

    def calculate_blocks(self, block_size: int = BLOCK_SIZE) -> List[Block]:
        """Split the piece into blocks, leaving out padding sections."""
        if not self.data:
            raise ValueError("piece has no file sections")
        blocks: List[Block] = []
        begin = 0
        length = 0
        piece_offset = 0

        def next_block() -> None:
            nonlocal begin, length
            if length == 0:
                return
            blocks.append(Block(begin, length))
            begin = piece_offset
            length = 0

        for section in self.data:
            if section.padding:
                piece_offset += section.length
                next_block()
                continue
            left = section.length
            while left > 0:
                n = min(left, block_size - length)
                length += n
                piece_offset += n
                left -= n
                if length == block_size:
                    next_block()
        next_block()
        return blocks

    def verify_hash(self, buf: bytes, hasher: Optional[Any] = None) -> bool:
        """Return True if ``buf`` has the piece length and matches the piece hash."""
        if len(buf) != self.length:
            return False
        h = hasher if hasher is not None else hashlib.sha1()
        h.update(bytes(buf))
        return h.digest() == self.hash

    def read(self) -> bytes:
        """Read the whole piece from its file sections."""
        return b"".join(section.read() for section in self.data)

    def write(self, data: bytes) -> int:
        """Write the whole piece to its file sections, skipping padding."""
        if len(data) != self.length:
            raise ValueError(
                f"data length {len(data)} does not match piece length {self.length}"
            )
        view = memoryview(bytes(data))
        position = 0
        for section in self.data:
            chunk = view[position : position + section.length]
            if not section.padding:
                section.write(bytes(chunk))
            position += section.length
        return len(data)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read ``size`` bytes starting at ``offset`` within the piece."""
        if size < 0 or offset < 0:
            raise ValueError("size and offset must not be negative")
        end = offset + size
        if end > self.length:
            raise EOFError(f"read past end of piece {self.index}")
        chunks = []
        position = 0
        for section in self.data:
            start = max(offset, position)
            stop = min(end, position + section.length)
            if start < stop:
                chunks.append(section._read(stop - start, start - position))
            position += section.length
            if position >= end:
                break
        return b"".join(chunks)


def new_pieces(
    piece_length: int,
    total_length: int,
    piece_hashes: Sequence[bytes],
    files: Sequence[FileEntry],
) -> List[Piece]:
    """Map the torrent's files onto pieces."""
    if not files:
        raise ValueError("torrent has no files")
    file_index = 0
    file_offset = 0
    total = 0
    pieces: List[Piece] = []
    for index, piece_hash in enumerate(piece_hashes):
        sections: List[FileSection] = []
        length = 0
        left = piece_length
        while left > 0:
            entry = files[file_index]
            n = min(left, entry.length - file_offset)
            sections.append(
                FileSection(entry.storage, file_offset, n, entry.name, entry.padding)
            )
            left -= n
            length += n
            file_offset += n
            total += n
            if total == total_length:
                break
            if file_offset == entry.length:
                file_index += 1
                file_offset = 0
                if file_index >= len(files):
                    raise ValueError("files are shorter than the torrent length")
        pieces.append(Piece(index=index, length=length, data=sections, hash=bytes(piece_hash)))
    return pieces