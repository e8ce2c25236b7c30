"""Verifying a downloaded piece and writing it to storage."""

from __future__ import annotations

import hashlib
from typing import Any, Callable, Optional

from raintorrent.piece import Piece
from raintorrent.semaphore import Semaphore


class PieceWriter:
    """Checks the hash of a piece buffer and writes it to disk if it matches."""

    def __init__(self, piece: Piece, source: Any, buffer: bytes) -> None:
        self.piece = piece
        self.source = source
        self.buffer = buffer
        self.hash_ok = False
        self.error: Optional[Exception] = None

    def run(
        self,
        semaphore: Optional[Semaphore] = None,
        on_write: Optional[Callable[[int], object]] = None,
    ) -> "PieceWriter":
        """Verify and write the piece; return self with ``hash_ok`` and ``error`` set.

        ``on_write`` is called with the number of bytes about to be written.
        ``semaphore`` limits the number of concurrent writes.
        """
        self.hash_ok = self.piece.verify_hash(self.buffer, hashlib.sha1())
        if not self.hash_ok:
            return self
        if on_write is not None:
            on_write(len(self.buffer))
        if semaphore is not None:
            semaphore.wait()
        try:
            self.piece.write(self.buffer)
        except Exception as exc:
            self.error = exc
        finally:
            if semaphore is not None:
                semaphore.signal()
        return self