"""A mapping that remembers the order in which keys were first inserted."""

from __future__ import annotations

from typing import Dict, Generic, Iterator, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class OrderedMap(Generic[K, V]):
    """Insertion-ordered map; overwriting a key keeps its original position."""

    def __init__(self) -> None:
        self._data: Dict[K, V] = {}

    def set(self, key: K, value: V) -> None:
        self._data[key] = value

    def delete(self, key: K) -> None:
        """Remove ``key``; a missing key is ignored."""
        self._data.pop(key, None)

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.get(key, default)

    def peek(self) -> V:
        """Return the value of the oldest entry; raise KeyError when empty."""
        for value in self._data.values():
            return value
        raise KeyError("peek from an empty map")

    def items(self) -> Iterator[Tuple[K, V]]:
        """Yield (key, value) pairs in insertion order."""
        yield from list(self._data.items())

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._data))

    def __contains__(self, key: object) -> bool:
        return key in self._data