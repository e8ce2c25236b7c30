"""Fair distribution of a limited amount of resources among requesters."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Stats:
    """Snapshot of the manager's allocations."""

    allocated_size: int = 0
    allocated_objects: int = 0
    pending_keys: int = 0


@dataclass
class _Request(Generic[T]):
    key: str
    data: T
    n: int
    notify: Callable[[T], object]
    cancel: Optional[threading.Event]

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


class ResourceManager(Generic[T]):
    """Hands out up to ``limit`` resource units.

    A request that cannot be satisfied immediately is queued when a ``notify``
    callback is given; the callback is called with the request's data once the
    resources have been granted. Queued requests are served in random order,
    picking a random key first, so no key can starve the others.
    """

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._available = limit
        self._objects = 0
        self._requests: Dict[str, List[_Request[T]]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._requests.clear()

    def stats(self) -> Stats:
        with self._lock:
            if self._closed:
                return Stats()
            self._prune_cancelled()
            return Stats(
                allocated_size=self._limit - self._available,
                allocated_objects=self._objects,
                pending_keys=len(self._requests),
            )

    def request(
        self,
        key: str,
        data: T,
        n: int,
        notify: Optional[Callable[[T], object]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Try to acquire ``n`` units for ``key``; release() must follow use.

        Returns True if acquired now. Otherwise the request is queued (when
        ``notify`` is given) until granted or until ``cancel`` is set.
        """
        if n < 0:
            return False
        with self._lock:
            if self._closed:
                return False
            if cancel is not None and cancel.is_set():
                return False
            if self._available >= n:
                self._available -= n
                self._objects += 1
                return True
            if notify is not None:
                self._requests.setdefault(key, []).append(
                    _Request(key, data, n, notify, cancel)
                )
            return False

    def release(self, n: int) -> None:
        """Return ``n`` units to the manager."""
        with self._lock:
            if self._closed:
                return
            if self._available + n > self._limit:
                raise ValueError("invalid release call")
            self._available += n
            self._objects -= 1
            granted = self._grant()
        for req in granted:
            req.notify(req.data)

    def _prune_cancelled(self) -> None:
        for key in list(self._requests):
            remaining = [r for r in self._requests[key] if not r.cancelled]
            if remaining:
                self._requests[key] = remaining
            else:
                del self._requests[key]

    def _grant(self) -> List[_Request[T]]:
        granted: List[_Request[T]] = []
        while True:
            self._prune_cancelled()
            if not self._requests:
                break
            key = random.choice(list(self._requests))
            pending = self._requests[key]
            index = random.randrange(len(pending))
            req = pending[index]
            if req.n > self._available:
                break
            self._available -= req.n
            self._objects += 1
            pending[index] = pending[-1]
            pending.pop()
            if not pending:
                del self._requests[key]
            granted.append(req)
        return granted