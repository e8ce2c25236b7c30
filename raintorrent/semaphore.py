"""Counting semaphore that reports how many threads hold and wait for it."""

from __future__ import annotations

import threading


class Semaphore:
    """Counting semaphore limiting concurrent access to a resource."""

    def __init__(self, n: int) -> None:
        if n < 0:
            raise ValueError("semaphore size must not be negative")
        self._capacity = n
        self._cond = threading.Condition()
        self._waiting = 0
        self._active = 0

    def waiting(self) -> int:
        """Number of threads blocked in wait()."""
        with self._cond:
            return self._waiting

    def active(self) -> int:
        """Number of threads currently holding the semaphore."""
        with self._cond:
            return self._active

    def wait(self) -> None:
        """Block until the resource is available, then acquire it."""
        with self._cond:
            self._waiting += 1
            try:
                while self._active >= self._capacity:
                    self._cond.wait()
            finally:
                self._waiting -= 1
            self._active += 1

    def signal(self) -> None:
        """Release the resource, waking one waiting thread."""
        with self._cond:
            if self._active == 0:
                raise RuntimeError("semaphore released more times than acquired")
            self._active -= 1
            self._cond.notify()

    def __enter__(self) -> "Semaphore":
        self.wait()
        return self

    def __exit__(self, *args: object) -> None:
        self.signal()