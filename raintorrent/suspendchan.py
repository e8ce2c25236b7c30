"""A FIFO queue whose receiving side can be suspended."""

from __future__ import annotations

import queue
import threading
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

T = TypeVar("T")


class SuspendChan(Generic[T]):
    """FIFO queue that blocks receivers while suspended.

    A ``maxsize`` of zero or less means the queue is unbounded.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._maxsize = maxsize
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._suspended = False

    def send(self, item: T) -> None:
        """Put an item, blocking while the queue is full."""
        with self._cond:
            while self._maxsize > 0 and len(self._items) >= self._maxsize:
                self._cond.wait()
            self._items.append(item)
            self._cond.notify_all()

    def receive(self, timeout: Optional[float] = None) -> T:
        """Take the next item; blocks while empty or suspended.

        Raises queue.Empty if nothing could be received within ``timeout``.
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: not self._suspended and bool(self._items), timeout
            )
            if not ready:
                raise queue.Empty
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def suspend(self) -> None:
        with self._cond:
            self._suspended = True

    def resume(self) -> None:
        with self._cond:
            self._suspended = False
            self._cond.notify_all()

    def suspended(self) -> bool:
        with self._cond:
            return self._suspended