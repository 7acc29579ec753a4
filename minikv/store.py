"""The keyspace: typed values with optional expiry and change notifications."""

from __future__ import annotations

import enum
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from minikv.orderedmap import OrderedMap
from minikv.resp import RedisError
from minikv.stream import StreamEntry


class ValueType(str, enum.Enum):
    STRING = "string"
    LIST = "list"
    SET = "set"
    HASH = "hash"
    ZSET = "zset"
    STREAM = "stream"
    NONE = "none"


class WrongTypeError(RedisError):
    """An operation was applied to a key holding another kind of value."""

    def __init__(
        self, message: str = "WRONGTYPE Operation against a key holding the wrong kind of value"
    ) -> None:
        super().__init__(message)


StreamInsertHandler = Callable[[StreamEntry], None]


@dataclass
class _Item:
    value: Any
    value_type: ValueType
    expire_at: Optional[int]

    def expired(self, now_ms: int) -> bool:
        return self.expire_at is not None and self.expire_at < now_ms


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class Store:
    """A thread-safe map from keys to typed values."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: Dict[str, _Item] = {}
        self._stream_handlers: Dict[str, Dict[Hashable, StreamInsertHandler]] = {}
        self._list_waiters: Dict[str, OrderedMap[Hashable, "queue.Queue[str]"]] = {}

    def _live_item(self, key: str) -> Optional[_Item]:
        item = self._data.get(key)
        if item is None:
            return None
        if item.expired(_now_millis()):
            del self._data[key]
            return None
        return item

    def get(self, key: str) -> Optional[Tuple[Any, ValueType]]:
        """Return (value, type) for a live key, or None; expired keys are dropped."""
        with self._lock:
            item = self._live_item(key)
            return None if item is None else (item.value, item.value_type)

    def get_exact(self, key: str, value_type: ValueType) -> Optional[Any]:
        """Return the value only if the key exists and holds ``value_type``."""
        found = self.get(key)
        if found is None or found[1] != value_type:
            return None
        return found[0]

    def set(
        self,
        key: str,
        value: Any,
        value_type: ValueType,
        expire_at: Optional[int] = None,
    ) -> None:
        """Store a value; ``expire_at`` is a Unix time in milliseconds."""
        with self._lock:
            self._data[key] = _Item(value, value_type, expire_at)

    def type_of(self, key: str) -> ValueType:
        with self._lock:
            item = self._live_item(key)
            return ValueType.NONE if item is None else item.value_type

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def register_stream_insert_handler(
        self, key: str, client_id: Hashable, handler: StreamInsertHandler
    ) -> None:
        with self._lock:
            self._stream_handlers.setdefault(key, {})[client_id] = handler

    def unregister_stream_insert_handler(self, key: str, client_id: Hashable) -> None:
        with self._lock:
            registry = self._stream_handlers.get(key)
            if registry is not None:
                registry.pop(client_id, None)

    def notify_stream_insert(self, key: str, entry: StreamEntry) -> None:
        """Call every handler registered for the stream with the new entry."""
        with self._lock:
            handlers = list(self._stream_handlers.get(key, {}).values())
        for handler in handlers:
            handler(entry)

    def register_list_push_handler(
        self, key: str, client_id: Hashable, channel: "queue.Queue[str]"
    ) -> None:
        with self._lock:
            registry = self._list_waiters.get(key)
            if registry is None:
                registry = OrderedMap()
                self._list_waiters[key] = registry
            registry.set(client_id, channel)

    def unregister_list_push_handler(self, key: str, client_id: Hashable) -> None:
        with self._lock:
            registry = self._list_waiters.get(key)
            if registry is not None:
                registry.delete(client_id)

    def notify_list_push(self, key: str, value: str) -> bool:
        """Offer ``value`` to the longest-waiting client without blocking.

        Returns whether it was delivered.
        """
        with self._lock:
            registry = self._list_waiters.get(key)
            if registry is None:
                return False
            try:
                channel = registry.peek()
            except KeyError:
                return False
        try:
            channel.put_nowait(value)
        except queue.Full:
            return False
        return True