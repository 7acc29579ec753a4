"""Handlers for stream commands: XADD, XRANGE and the optionally blocking XREAD."""

from __future__ import annotations

import queue
import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from minikv.request import Request
from minikv.resp import (
    NIL_BULK_STRING,
    RedisError,
    RespValue,
    array,
    bulk_string,
)
from minikv.store import ValueType, WrongTypeError
from minikv.stream import (
    RedisStream,
    StreamEntry,
    StreamEntryID,
    StreamError,
    parse_entry_id,
)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT64_LIMIT = 1 << 64


def entries_to_resp(entries: Iterable[StreamEntry]) -> RespValue:
    """Encode entries as ``[[id, [field, value, ...]], ...]``."""
    encoded = []
    for entry in entries:
        fields = []
        for name, value in entry.fields.items():
            fields.append(bulk_string(name))
            fields.append(bulk_string(value))
        encoded.append(array([bulk_string(str(entry.id)), array(fields)]))
    return array(encoded)


def xadd(req: Request, args: List[str]) -> None:
    """XADD key id field value [field value ...]."""
    if len(args) < 4 or len(args) % 2 != 0:
        raise RedisError(
            "XADD requires at least 4 arguments and an even number of additional arguments"
        )
    key, id_text = args[0], args[1]
    if not key or not id_text:
        raise RedisError("XADD requires a key and an ID")

    store = req.state.store
    found = store.get(key)
    if found is None:
        stream = RedisStream()
        store.set(key, stream, ValueType.STREAM)
    else:
        value, value_type = found
        if value_type != ValueType.STREAM or not isinstance(value, RedisStream):
            raise RedisError("key is not a stream")
        stream = value

    pairs = args[2:]
    fields: Dict[str, str] = dict(zip(pairs[::2], pairs[1::2]))
    entry = stream.add_entry(id_text, fields)

    req.reply(bulk_string(str(entry.id)))

    threading.Thread(
        target=store.notify_stream_insert, args=(key, entry), daemon=True
    ).start()


def xrange(req: Request, args: List[str]) -> None:
    """XRANGE key start end; ``-`` and ``+`` leave a bound open."""
    if len(args) != 3:
        raise RedisError("XRANGE requires 3 arguments")
    key, start_text, end_text = args

    start: Optional[StreamEntryID] = None
    end: Optional[StreamEntryID] = None
    if start_text != "-":
        try:
            start = parse_entry_id(start_text)
        except StreamError:
            raise RedisError("invalid start") from None
    if end_text != "+":
        try:
            end = parse_entry_id(end_text)
        except StreamError:
            raise RedisError("invalid end") from None

    stream = req.state.store.get_exact(key, ValueType.STREAM)
    if not isinstance(stream, RedisStream):
        raise RedisError("key is not a stream")
    req.reply(entries_to_resp(stream.range(start, end)))


def _parse_block(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise RedisError(f"error parsing BLOCK timeout: invalid syntax: {text!r}")
    return int(text)


def _exclusive_start(entry_id: StreamEntryID) -> StreamEntryID:
    return StreamEntryID(entry_id.millis, (entry_id.seq + 1) % _UINT64_LIMIT)


def xread(req: Request, args: List[str]) -> None:
    """XREAD [BLOCK millis] STREAMS key [key ...] id [id ...]."""
    if len(args) < 3:
        raise RedisError("XREAD requires at least 3 arguments")

    block_ms: Optional[int] = None
    if args[0].upper() == "BLOCK":
        block_ms = _parse_block(args[1])
        args = args[2:]

    remaining = len(args) - 1
    if remaining % 2 != 0:
        raise RedisError("XREAD must have even numer of arguments after 'streams'")
    count = remaining // 2
    keys, id_texts = args[1 : 1 + count], args[1 + count :]

    store = req.state.store
    streams: List[Optional[RedisStream]] = []
    for key in keys:
        found = store.get(key)
        if found is not None and not isinstance(found[0], RedisStream):
            raise WrongTypeError()
        streams.append(None if found is None else found[0])

    starts: List[Optional[StreamEntryID]] = []
    for text in id_texts:
        if text == "$":
            starts.append(None)
        else:
            starts.append(_exclusive_start(parse_entry_id(text)))

    collected: Dict[str, List[StreamEntry]] = {}
    fetched = 0
    for key, stream, start in zip(keys, streams, starts):
        if stream is None or start is None:
            continue
        entries = stream.range(start, None)
        collected[key] = entries
        fetched += len(entries)

    if fetched == 0 and block_ms is not None:
        results: "queue.Queue[Tuple[str, StreamEntry]]" = queue.Queue(maxsize=1)
        client_id = req.client.id

        def _handler_for(stream_key: str):
            def on_insert(entry: StreamEntry) -> None:
                try:
                    results.put_nowait((stream_key, entry))
                except queue.Full:
                    pass

            return on_insert

        timeout = None if block_ms == 0 else max(block_ms, 0) / 1000
        try:
            for key in keys:
                store.register_stream_insert_handler(key, client_id, _handler_for(key))
            try:
                key, entry = results.get(timeout=timeout)
            except queue.Empty:
                pass
            else:
                collected.setdefault(key, []).append(entry)
                fetched += 1
        finally:
            for key in keys:
                store.unregister_stream_insert_handler(key, client_id)

    if fetched == 0:
        req.reply(NIL_BULK_STRING)
        return

    reply = []
    for key in keys:
        entries = collected.get(key)
        if not entries:
            continue
        reply.append(array([bulk_string(key), entries_to_resp(entries)]))
    req.reply(array(reply))