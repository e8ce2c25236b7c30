"""Downloading all blocks of one piece from one peer."""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Protocol, Set

from raintorrent.piece import Piece


class BlockError(Exception):
    """A received block could not be accepted as expected."""


class BlockDuplicateError(BlockError):
    """The received block was already downloaded."""

    def __init__(self) -> None:
        super().__init__("received duplicate block")


class BlockNotRequestedError(BlockError):
    """The received block was not requested; its data is still saved."""

    def __init__(self) -> None:
        super().__init__("received not requested block")


class BlockInvalidError(BlockError):
    """The received block does not match any block of the piece."""

    def __init__(self) -> None:
        super().__init__("received block is invalid")


class Peer(Protocol):
    def request_piece(self, index: int, begin: int, length: int) -> None: ...

    def cancel_piece(self, index: int, begin: int, length: int) -> None: ...

    def enabled_fast(self) -> bool: ...


class PieceDownloader:
    """Tracks requested, pending and downloaded blocks of a piece."""

    def __init__(self, piece: Piece, peer: Peer, allowed_fast: bool, buffer: bytearray) -> None:
        blocks = piece.calculate_blocks()
        self.piece = piece
        self.peer = peer
        self.allowed_fast = allowed_fast
        self.buffer = buffer
        # begin -> length; padding regions are not included.
        self.blocks: Dict[int, int] = {blk.begin: blk.length for blk in blocks}
        self.remaining: Deque[int] = deque(blk.begin for blk in blocks)
        self.pending: Dict[int, None] = {}
        self.downloaded: Set[int] = set()

    def choked(self) -> None:
        """Handle being choked by the peer: pending requests go back to remaining."""
        if self.allowed_fast:
            return
        if self.peer.enabled_fast():
            # The peer rejects pending requests itself.
            return
        self.remaining.extend(self.pending)
        self.pending.clear()

    def _find_block(self, begin: int, length: int) -> bool:
        return self.blocks.get(begin) == length

    def got_block(self, begin: int, data: bytes) -> None:
        """Store a block received from the peer."""
        if not self._find_block(begin, len(data)):
            raise BlockInvalidError()
        if begin in self.downloaded:
            raise BlockDuplicateError()
        self.buffer[begin : begin + len(data)] = data
        self.downloaded.add(begin)
        if begin not in self.pending:
            raise BlockNotRequestedError()
        del self.pending[begin]

    def rejected(self, begin: int, length: int) -> bool:
        """Handle a rejected request; return False if no such block exists."""
        if not self._find_block(begin, length):
            return False
        self.pending.pop(begin, None)
        self.remaining.append(begin)
        return True

    def cancel_pending(self) -> None:
        """Send cancel messages for all in-flight requests."""
        for begin in self.pending:
            self.peer.cancel_piece(self.piece.index, begin, self.blocks[begin])

    def request_blocks(self, queue_length: int) -> None:
        """Request remaining blocks until ``queue_length`` requests are pending."""
        while self.remaining and len(self.pending) < queue_length:
            begin = self.remaining.popleft()
            length = self.blocks[begin]
            if begin not in self.downloaded:
                self.peer.request_piece(self.piece.index, begin, length)
            self.pending[begin] = None

    def done(self) -> bool:
        """True when every block has been downloaded."""
        return len(self.downloaded) == len(self.blocks)