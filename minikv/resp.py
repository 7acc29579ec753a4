"""RESP values: construction, wire encoding and stream decoding."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Optional, Tuple, Union

_CRLF = b"\r\n"
_INT_RE = re.compile(rb"[+-]?[0-9]+")


class RedisError(Exception):
    """An error that is reported to a client as a RESP error reply."""


class ProtocolError(RedisError):
    """Input that does not follow the RESP wire format."""


class RespKind(enum.Enum):
    """The kinds of RESP value the server understands."""

    STRING = "+"
    INTEGER = ":"
    ARRAY = "*"
    BULK_STRING = "$"
    ERROR = "-"

    @property
    def prefix(self) -> int:
        return ord(self.value)


Payload = Union[str, int, Tuple["RespValue", ...], None]


def _to_bytes(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _to_text(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


@dataclass(frozen=True)
class RespValue:
    """A single RESP value; ``value`` is None for null bulk strings and arrays."""

    kind: RespKind
    value: Payload = None

    def encode(self) -> bytes:
        """Serialise the value to its wire form."""
        if self.kind is RespKind.STRING:
            return b"+" + _to_bytes(self.value) + _CRLF
        if self.kind is RespKind.ERROR:
            return b"-ERR " + _to_bytes(self.value) + _CRLF
        if self.kind is RespKind.BULK_STRING:
            if self.value is None:
                return b"$-1\r\n"
            data = _to_bytes(self.value)
            return b"$%d\r\n" % len(data) + data + _CRLF
        if self.kind is RespKind.INTEGER:
            return b":%d\r\n" % self.value
        if self.value is None:
            return b"*-1\r\n"
        header = b"*%d\r\n" % len(self.value)
        return header + b"".join(item.encode() for item in self.value)


def simple_string(text: str) -> RespValue:
    return RespValue(RespKind.STRING, text)


def error_value(message: object) -> RespValue:
    """An error reply carrying the text of ``message`` (a string or an exception)."""
    return RespValue(RespKind.ERROR, str(message))


def bulk_string(text: Optional[str]) -> RespValue:
    return RespValue(RespKind.BULK_STRING, text)


def integer(value: int) -> RespValue:
    return RespValue(RespKind.INTEGER, int(value))


def array(items: Optional[Iterable[RespValue]]) -> RespValue:
    return RespValue(RespKind.ARRAY, None if items is None else tuple(items))


def bulk_array(items: Iterable[str]) -> RespValue:
    """An array of bulk strings."""
    return array(bulk_string(item) for item in items)


NIL_BULK_STRING = bulk_string(None)
NIL_ARRAY = array(None)
EMPTY_ARRAY = array(())


class _CountingReader:
    """Reads from a binary stream and counts the bytes consumed."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.count = 0

    def read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                raise EOFError("unexpected end of stream")
            chunks.append(chunk)
            remaining -= len(chunk)
        self.count += size
        return b"".join(chunks)

    def read_byte(self) -> int:
        return self.read_exact(1)[0]

    def read_line(self) -> bytes:
        line = self._stream.readline()
        if not line.endswith(b"\n"):
            raise EOFError("unexpected end of stream")
        self.count += len(line)
        return line


def _parse_int(line: bytes) -> int:
    text = line.strip()
    if not _INT_RE.fullmatch(text):
        raise ProtocolError(f"invalid integer: {_to_text(text)!r}")
    return int(text)


def _read_string(reader: _CountingReader) -> RespValue:
    return simple_string(_to_text(reader.read_line().removesuffix(_CRLF)))


def _read_error(reader: _CountingReader) -> RespValue:
    return error_value(_to_text(reader.read_line().removesuffix(_CRLF)))


def _read_bulk_string(reader: _CountingReader) -> RespValue:
    length = _parse_int(reader.read_line())
    if length == -1:
        return NIL_BULK_STRING
    if length < 0:
        raise ProtocolError(f"invalid bulk string length: {length}")
    data = reader.read_exact(length)
    reader.read_exact(2)
    return bulk_string(_to_text(data))


def _read_integer(reader: _CountingReader) -> RespValue:
    return integer(_parse_int(reader.read_line()))


def _read_array(reader: _CountingReader) -> RespValue:
    length = _parse_int(reader.read_line())
    if length == -1:
        return NIL_ARRAY
    if length < 0:
        raise ProtocolError(f"invalid array length: {length}")
    return array(_decode_any(reader) for _ in range(length))


_BODY_READERS = {
    RespKind.STRING: _read_string,
    RespKind.ERROR: _read_error,
    RespKind.BULK_STRING: _read_bulk_string,
    RespKind.INTEGER: _read_integer,
    RespKind.ARRAY: _read_array,
}

_KIND_BY_PREFIX = {kind.prefix: kind for kind in RespKind}


def _decode_any(reader: _CountingReader) -> RespValue:
    flag = reader.read_byte()
    kind = _KIND_BY_PREFIX.get(flag)
    if kind is None:
        raise ProtocolError(f"unknown RESP type: {chr(flag)!r}")
    return _BODY_READERS[kind](reader)


def decode(stream: BinaryIO) -> Tuple[RespValue, int]:
    """Read one value of any kind; return it with the number of bytes consumed.

    Raises EOFError when the stream ends and ProtocolError on malformed input.
    """
    reader = _CountingReader(stream)
    value = _decode_any(reader)
    return value, reader.count


def decode_exact(stream: BinaryIO, kind: RespKind) -> Tuple[RespValue, int]:
    """Read one value that must be of ``kind``; return it with the bytes consumed."""
    if not isinstance(kind, RespKind):
        raise ProtocolError(f"unknown RESP value type: {kind!r}")
    reader = _CountingReader(stream)
    flag = reader.read_byte()
    if flag != kind.prefix:
        raise ProtocolError(
            f"expected {kind.value!r} for RESP {kind.name.lower()}, got {chr(flag)!r}"
        )
    value = _BODY_READERS[kind](reader)
    return value, reader.count