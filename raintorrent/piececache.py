"""LRU cache of piece data with a time-to-live and limited parallel loads."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from raintorrent.semaphore import Semaphore

Loader = Callable[[], bytes]


class _Rate:
    """Counts events seen within a sliding time window."""

    def __init__(self, window: float = 60.0) -> None:
        self._window = window
        self._events: Deque[Tuple[float, int]] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._events and self._events[0][0] <= now - self._window:
            self._events.popleft()

    def mark(self, n: int = 1) -> None:
        now = time.monotonic()
        with self._lock:
            self._events.append((now, n))
            self._prune(now)

    def count(self) -> int:
        with self._lock:
            self._prune(time.monotonic())
            return sum(n for _, n in self._events)

    def rate(self) -> float:
        """Events per second over the window."""
        return self.count() / self._window


class _Item:
    __slots__ = ("key", "value", "loaded", "error", "expires_at", "lock")

    def __init__(self, key: str) -> None:
        self.key = key
        self.value = b""
        self.loaded = False
        self.error: Optional[BaseException] = None
        self.expires_at = 0.0
        self.lock = threading.Lock()


class Cache:
    """Least-recently-used cache of byte values bounded by total size.

    Items expire ``ttl`` seconds after their last access.
    """

    def __init__(self, max_size: int, ttl: float, parallel_reads: int = 1) -> None:
        self._max_size = max_size
        self._ttl = ttl
        self._items: Dict[str, _Item] = {}
        self._access: "OrderedDict[str, _Item]" = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()
        self._sem = Semaphore(parallel_reads)
        self.num_cached = _Rate()
        self.num_total = _Rate()
        self.num_load = _Rate()
        self.num_loaded_bytes = _Rate()

    def close(self) -> None:
        """Release all cached data."""
        self.clear()

    def clear(self) -> None:
        """Drop every item."""
        with self._lock:
            self._items = {}
            self._access.clear()
            self._size = 0

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._items)

    def loads_active(self) -> int:
        """Number of loader calls running now."""
        return self._sem.active()

    def loads_waiting(self) -> int:
        """Number of loader calls waiting for a free slot."""
        return self._sem.waiting()

    def size(self) -> int:
        """Total size of cached values."""
        with self._lock:
            self._purge_expired()
            return self._size

    def utilization(self) -> int:
        """Hit ratio over the last minute as a percentage, 0 to 100."""
        total = self.num_total.count()
        if total == 0:
            return 0
        return 100 * self.num_cached.count() // total

    def keys(self) -> List[str]:
        """Cached keys ordered from least to most recently accessed."""
        with self._lock:
            self._purge_expired()
            return list(self._access)

    def get(self, key: str, loader: Optional[Loader]) -> bytes:
        """Return the value for ``key``, calling ``loader`` if it is not cached.

        Exceptions raised by the loader propagate and nothing is cached.
        """
        item = self._get_item(key)
        with item.lock:
            if item.loaded:
                if item.error is not None:
                    raise item.error
                self._touch(item)
                return item.value
            if loader is None:
                raise KeyError(key)
            with self._sem:
                try:
                    item.value = bytes(loader())
                except Exception as exc:
                    item.error = exc
            item.loaded = True
            self.num_load.mark(1)
            self.num_loaded_bytes.mark(len(item.value))
            return self._handle_new_item(item)

    def _get_item(self, key: str) -> _Item:
        with self._lock:
            self._purge_expired()
            self.num_total.mark(1)
            item = self._items.get(key)
            if item is not None:
                self.num_cached.mark(1)
            else:
                item = _Item(key)
                self._items[key] = item
            return item

    def _forget(self, item: _Item) -> None:
        if self._items.get(item.key) is item:
            del self._items[item.key]

    def _handle_new_item(self, item: _Item) -> bytes:
        with self._lock:
            if item.error is not None:
                self._forget(item)
                raise item.error
            # Values larger than the whole cache are not kept.
            if len(item.value) > self._max_size:
                self._forget(item)
                return item.value
            self._make_room(len(item.value))
            self._size += len(item.value)
            item.expires_at = time.monotonic() + self._ttl
            self._access[item.key] = item
            return item.value

    def _touch(self, item: _Item) -> None:
        with self._lock:
            if self._access.get(item.key) is item:
                self._access.move_to_end(item.key)
                item.expires_at = time.monotonic() + self._ttl

    def _make_room(self, needed: int) -> None:
        while self._access and self._max_size - self._size < needed:
            oldest = next(iter(self._access.values()))
            self._remove(oldest)

    def _remove(self, item: _Item) -> None:
        del self._access[item.key]
        self._forget(item)
        self._size -= len(item.value)

    def _purge_expired(self) -> None:
        now = time.monotonic()
        while self._access:
            oldest = next(iter(self._access.values()))
            if oldest.expires_at > now:
                break
            self._remove(oldest)