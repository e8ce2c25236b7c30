"""A small identity-based set backed by a list."""

from __future__ import annotations

from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class SliceSet(Generic[T]):
    """Set of objects compared by identity, stored in a list."""

    def __init__(self) -> None:
        self.items: list[T] = []

    def add(self, item: T) -> bool:
        """Add the item; return False if it was already present."""
        if self.has(item):
            return False
        self.items.append(item)
        return True

    def remove(self, item: T) -> bool:
        """Remove the item by swapping in the last one; return False if absent."""
        for index, existing in enumerate(self.items):
            if existing is item:
                self.items[index] = self.items[-1]
                self.items.pop()
                return True
        return False

    def has(self, item: T) -> bool:
        return any(existing is item for existing in self.items)

    def __contains__(self, item: object) -> bool:
        return self.has(item)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self.items))