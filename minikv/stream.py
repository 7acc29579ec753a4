"""Append-only stream values with ordered entry IDs."""

from __future__ import annotations

import bisect
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from minikv.resp import RedisError

_UINT64_LIMIT = 1 << 64
_DIGITS_RE = re.compile(r"[0-9]+")
_ID_RE = re.compile(r"\s*\+?([0-9]+)-\s*\+?([0-9]+)")


class StreamError(RedisError):
    """A stream ID that is malformed or out of order."""


@dataclass(frozen=True, order=True)
class StreamEntryID:
    """An entry ID made of a millisecond time and a sequence number."""

    millis: int
    seq: int

    def __str__(self) -> str:
        return f"{self.millis}-{self.seq}"


@dataclass
class StreamEntry:
    id: StreamEntryID
    fields: Dict[str, str] = field(default_factory=dict)


def parse_entry_id(text: str) -> StreamEntryID:
    """Parse ``<millis>-<seq>``; raise StreamError when it is malformed."""
    match = _ID_RE.match(text)
    if match is None:
        raise StreamError(f"invalid stream entry ID format: {text}")
    millis, seq = int(match.group(1)), int(match.group(2))
    if millis >= _UINT64_LIMIT or seq >= _UINT64_LIMIT:
        raise StreamError(f"invalid stream entry ID format: {text}")
    return StreamEntryID(millis, seq)


def _parse_uint(text: str, part: str) -> int:
    if not _DIGITS_RE.fullmatch(text):
        raise StreamError(f"invalid {part} part: {text!r} is not a number")
    value = int(text)
    if value >= _UINT64_LIMIT:
        raise StreamError(f"invalid {part} part: {text!r} is out of range")
    return value


def _parse_id_input(text: str) -> Tuple[Optional[int], Optional[int]]:
    text = text.strip()
    if text == "*":
        return None, None
    parts = text.split("-")
    if len(parts) != 2:
        raise StreamError("invalid format")
    millis = _parse_uint(parts[0], "millis")
    if parts[1] == "*":
        return millis, None
    return millis, _parse_uint(parts[1], "sequence")


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class RedisStream:
    """Entries kept in strictly increasing ID order."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids: List[StreamEntryID] = []
        self._entries: List[StreamEntry] = []

    def add_entry(self, id_text: str, fields: Dict[str, str]) -> StreamEntry:
        """Append an entry; ``id_text`` may be ``*`` or ``<millis>-*`` to auto-generate.

        Raises StreamError when the ID is malformed or not above the current top.
        """
        try:
            millis, seq = _parse_id_input(id_text)
        except StreamError as exc:
            raise StreamError(f"invalid stream entry ID: {exc}") from None

        with self._lock:
            top = self._ids[-1] if self._ids else None
            if millis is None:
                if top is not None:
                    millis, seq = top.millis, top.seq + 1
                else:
                    millis, seq = _now_millis(), 0
            elif seq is None:
                if top is not None:
                    if millis < top.millis:
                        raise StreamError(
                            "The ID specified in XADD is equal or smaller than the target stream top item"
                        )
                    seq = top.seq + 1 if millis == top.millis else 0
                else:
                    seq = 1 if millis == 0 else 0
            else:
                if millis == 0 and seq == 0:
                    raise StreamError("The ID specified in XADD must be greater than 0-0")
                if top is not None and (millis, seq) <= (top.millis, top.seq):
                    raise StreamError(
                        "The ID specified in XADD is equal or smaller than the target stream top item"
                    )

            entry = StreamEntry(StreamEntryID(millis, seq), fields)
            self._ids.append(entry.id)
            self._entries.append(entry)
            return entry

    def get(self, id_text: str) -> Optional[StreamEntry]:
        """Return the entry with the given ID, or None when absent or malformed."""
        try:
            entry_id = parse_entry_id(id_text)
        except StreamError:
            return None
        with self._lock:
            index = bisect.bisect_left(self._ids, entry_id)
            if index < len(self._ids) and self._ids[index] == entry_id:
                return self._entries[index]
            return None

    def range(
        self,
        start: Optional[StreamEntryID] = None,
        end: Optional[StreamEntryID] = None,
    ) -> List[StreamEntry]:
        """Entries with start <= id <= end; a None bound is open."""
        with self._lock:
            low = 0 if start is None else bisect.bisect_left(self._ids, start)
            high = len(self._ids) if end is None else bisect.bisect_right(self._ids, end)
            return self._entries[low:high]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)