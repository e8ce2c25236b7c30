"""Storage of torrent files: an abstract interface and an on-disk implementation."""

from __future__ import annotations

import abc
import os
import sys
import threading
from typing import Tuple, Union


class PaddingWriteError(OSError):
    """Raised when data is written to a padding file."""


class PaddingFile:
    """A file that reads as zeros and must never be written."""

    def __init__(self, length: int = 0) -> None:
        self.length = length
        self.closed = False

    def read_at(self, size: int, offset: int) -> bytes:
        # Zeros are served for clients that do not understand padding files.
        return bytes(size)

    def write_at(self, data: bytes, offset: int) -> int:
        raise PaddingWriteError(
            f"attempt to write padding file: {len(data)} bytes at offset {offset}"
        )

    def close(self) -> None:
        self.closed = True


class OSFile:
    """A file on disk accessed with positional reads and writes."""

    def __init__(self, fd: int, path: str) -> None:
        self.fd = fd
        self.path = path
        self._lock = threading.Lock()

    def _pread(self, size: int, offset: int) -> bytes:
        if hasattr(os, "pread"):
            return os.pread(self.fd, size, offset)
        with self._lock:
            os.lseek(self.fd, offset, os.SEEK_SET)
            return os.read(self.fd, size)

    def _pwrite(self, data: memoryview, offset: int) -> int:
        if hasattr(os, "pwrite"):
            return os.pwrite(self.fd, data, offset)
        with self._lock:
            os.lseek(self.fd, offset, os.SEEK_SET)
            return os.write(self.fd, data)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read exactly ``size`` bytes at ``offset``; EOFError if the file is shorter."""
        chunks = []
        remaining = size
        position = offset
        while remaining > 0:
            chunk = self._pread(remaining, position)
            if not chunk:
                raise EOFError(f"{self.path}: unexpected end of file at offset {position}")
            chunks.append(chunk)
            remaining -= len(chunk)
            position += len(chunk)
        return b"".join(chunks)

    def write_at(self, data: bytes, offset: int) -> int:
        """Write all of ``data`` at ``offset`` and return the number of bytes written."""
        view = memoryview(data)
        written = 0
        while written < len(view):
            written += self._pwrite(view[written:], offset + written)
        return written

    def close(self) -> None:
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1


StorageFile = Union[OSFile, PaddingFile]


class Storage(abc.ABC):
    """Interface for opening the files of a torrent."""

    @abc.abstractmethod
    def open(self, name: str, size: int) -> Tuple[StorageFile, bool]:
        """Open or create the file; return it and whether it already existed."""

    @abc.abstractmethod
    def root_dir(self) -> str:
        """Directory that holds all files."""


def _disable_read_ahead(fd: int) -> None:
    if sys.platform.startswith("linux") and hasattr(os, "posix_fadvise"):
        os.posix_fadvise(fd, 0, 0, os.POSIX_FADV_RANDOM)


class FileStorage(Storage):
    """Stores torrent files under a destination directory on disk."""

    def __init__(self, dest: str, perm: int = 0o750) -> None:
        self._dest = os.path.abspath(dest)
        self._perm = perm

    def open(self, name: str, size: int) -> Tuple[OSFile, bool]:
        # All files are kept under the destination, even for absolute names.
        path = os.path.normpath(self._dest + os.sep + os.path.normpath(name))
        os.makedirs(os.path.dirname(path), mode=self._perm, exist_ok=True)

        mode = self._perm & ~0o111
        flags = (
            os.O_RDWR
            | getattr(os, "O_SYNC", 0)
            | getattr(os, "O_NOATIME", 0)
            | getattr(os, "O_BINARY", 0)
        )
        exists = True
        try:
            fd = os.open(path, flags, mode)
        except FileNotFoundError:
            fd = os.open(path, flags | os.O_CREAT, mode)
            exists = False
        try:
            if not exists or os.fstat(fd).st_size != size:
                os.ftruncate(fd, size)
            _disable_read_ahead(fd)
        except BaseException:
            os.close(fd)
            raise
        return OSFile(fd, path), exists

    def root_dir(self) -> str:
        return self._dest