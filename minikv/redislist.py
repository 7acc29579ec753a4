"""A thread-safe list value as held by the key-value store."""

from __future__ import annotations

import threading
from typing import Iterable, List


class RedisList:
    """An ordered list of strings supporting pushes and pops at both ends."""

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._items: List[str] = list(items)

    def lpush(self, *items: str) -> int:
        """Push each item onto the head in turn; return the new length."""
        with self._lock:
            self._items[:0] = reversed(items)
            return len(self._items)

    def rpush(self, *items: str) -> int:
        """Append the items to the tail; return the new length."""
        with self._lock:
            self._items.extend(items)
            return len(self._items)

    def lpop(self, count: int = 1) -> List[str]:
        """Remove and return up to ``count`` items from the head.

        An empty list comes back when the list is empty or ``count`` is not positive.
        """
        with self._lock:
            if count <= 0 or not self._items:
                return []
            popped = self._items[:count]
            del self._items[:count]
            return popped

    def rpop(self, count: int = 1) -> List[str]:
        """Remove and return up to ``count`` items from the tail, in list order.

        An empty list comes back when the list is empty or ``count`` is not positive.
        """
        with self._lock:
            if count <= 0 or not self._items:
                return []
            popped = self._items[-count:]
            del self._items[-count:]
            return popped

    def range(self, start: int, end: int) -> List[str]:
        """Return the items from ``start`` to ``end`` inclusive; negatives count from the tail."""
        with self._lock:
            size = len(self._items)
            if size == 0:
                return []
            if start < 0:
                start += size
            if end < 0:
                end += size
            start = max(start, 0)
            end = min(end, size - 1)
            if start > end or start >= size:
                return []
            return self._items[start : end + 1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)