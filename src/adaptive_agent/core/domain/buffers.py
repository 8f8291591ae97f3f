"""
Fixed-capacity buffers shared by the in-process stores.

All bounded logs in the agent (learning records, conversation entries,
metrics, captured log events) go through RingBuffer so eviction happens in a
single place and can be tested on its own.
"""

import threading
from collections import deque
from typing import Callable, Generic, Iterator, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Thread-safe append-only buffer that keeps at most ``capacity`` items.

    Appending beyond capacity evicts the oldest item (FIFO). Items are never
    modified in place; readers receive copies of the underlying sequence.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, item: T) -> T | None:
        """
        Append an item.

        Returns:
            The evicted item if the buffer was full, otherwise None.
        """
        with self._lock:
            evicted = self._items[0] if len(self._items) == self.capacity else None
            self._items.append(item)
            return evicted

    def latest(self, limit: int | None = None) -> list[T]:
        """Return the newest ``limit`` items in insertion order (oldest first)."""
        with self._lock:
            items = list(self._items)
        if limit is None:
            return items
        if limit <= 0:
            return []
        return items[-limit:]

    def snapshot(self) -> list[T]:
        """Return all items in insertion order."""
        return self.latest()

    def retain(self, predicate: Callable[[T], bool]) -> int:
        """
        Keep only items matching ``predicate``.

        Returns:
            Number of items removed.
        """
        with self._lock:
            kept = [item for item in self._items if predicate(item)]
            removed = len(self._items) - len(kept)
            self._items = deque(kept, maxlen=self.capacity)
            return removed

    def replace(self, index: int, item: T) -> T:
        """
        Replace the item at ``index`` (insertion order) in place.

        Returns:
            The replaced item.

        Raises:
            IndexError: If ``index`` is out of range
        """
        with self._lock:
            previous = self._items[index]
            self._items[index] = item
            return previous

    def update_first(self, predicate: Callable[[T], bool], update: Callable[[T], T]) -> T | None:
        """
        Replace the first item matching ``predicate`` with ``update(item)``.

        Search and replacement happen under one lock acquisition, so
        concurrent appends cannot shift the item in between.

        Returns:
            The new item, or None if nothing matched.
        """
        with self._lock:
            for index, item in enumerate(self._items):
                if predicate(item):
                    updated = update(item)
                    self._items[index] = updated
                    return updated
        return None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())
