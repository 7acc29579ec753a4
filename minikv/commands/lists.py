"""Handlers for list commands, including the blocking BLPOP."""

from __future__ import annotations

import math
import queue
import re
from typing import List, Optional, Tuple

from minikv.redislist import RedisList
from minikv.request import Request
from minikv.resp import (
    EMPTY_ARRAY,
    NIL_ARRAY,
    NIL_BULK_STRING,
    RedisError,
    bulk_array,
    bulk_string,
    integer,
)
from minikv.store import Store, ValueType, WrongTypeError

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _parse_int(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(text)
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(text)
    return value


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"invalid syntax: {text!r}")
    return float(text)


def _existing_list(store: Store, key: str) -> Optional[RedisList]:
    """The list at ``key``, None if absent; WrongTypeError if it is another kind."""
    found = store.get(key)
    if found is None:
        return None
    value, _ = found
    if not isinstance(value, RedisList):
        raise WrongTypeError()
    return value


def _list_for_push(store: Store, key: str) -> RedisList:
    found = store.get(key)
    if found is None:
        created = RedisList()
        store.set(key, created, ValueType.LIST)
        return created
    value, value_type = found
    if value_type != ValueType.LIST or not isinstance(value, RedisList):
        raise RedisError("key is not a list")
    return value


def _push(req: Request, args: List[str], command: str, left: bool) -> None:
    if len(args) < 2:
        raise RedisError(f"{command} requires at least 2 arguments")
    key, *items = args
    store = req.state.store
    target = _list_for_push(store, key)
    length = target.lpush(*items) if left else target.rpush(*items)
    for item in items:
        store.notify_list_push(key, item)
    req.reply(integer(length))


def lpush(req: Request, args: List[str]) -> None:
    _push(req, args, "LPUSH", left=True)


def rpush(req: Request, args: List[str]) -> None:
    _push(req, args, "RPUSH", left=False)


def _pop_count(args: List[str], command: str) -> int:
    if not 1 <= len(args) <= 2:
        raise RedisError(f"{command} takes 1 or 2 arguments")
    if len(args) == 1:
        return 1
    try:
        count = _parse_int(args[1])
    except ValueError:
        raise RedisError("invalid count") from None
    if count <= 0:
        raise RedisError("value is out of range, must be positive")
    return count


def _pop(req: Request, args: List[str], command: str, left: bool) -> None:
    count = _pop_count(args, command)
    source = _existing_list(req.state.store, args[0])
    if source is None:
        req.reply(NIL_BULK_STRING)
        return
    values = source.lpop(count) if left else source.rpop(count)
    if not values:
        req.reply(NIL_BULK_STRING)
    elif count == 1:
        req.reply(bulk_string(values[0]))
    else:
        req.reply(bulk_array(values))


def lpop(req: Request, args: List[str]) -> None:
    _pop(req, args, "LPOP", left=True)


def rpop(req: Request, args: List[str]) -> None:
    _pop(req, args, "RPOP", left=False)


def llen(req: Request, args: List[str]) -> None:
    if len(args) != 1:
        raise RedisError("LLEN requires exactly 1 argument")
    target = _existing_list(req.state.store, args[0])
    req.reply(integer(0 if target is None else len(target)))


def lrange(req: Request, args: List[str]) -> None:
    if len(args) != 3:
        raise RedisError("LRANGE requires exactly 3 arguments")
    key, start_text, end_text = args
    try:
        start = _parse_int(start_text)
    except ValueError:
        raise RedisError("invalid start") from None
    try:
        end = _parse_int(end_text)
    except ValueError:
        raise RedisError("invalid end") from None

    found = req.state.store.get(key)
    if found is None or not isinstance(found[0], RedisList):
        req.reply(EMPTY_ARRAY)
        return
    req.reply(bulk_array(found[0].range(start, end)))


class _KeyedWaiter:
    """Forwards a pushed value, tagged with its key, to a shared result queue."""

    def __init__(self, key: str, results: "queue.Queue[Tuple[str, str]]") -> None:
        self._key = key
        self._results = results

    def put_nowait(self, value: str) -> None:
        self._results.put_nowait((self._key, value))


def blpop(req: Request, args: List[str]) -> None:
    """BLPOP key [key ...] timeout; a timeout of 0 waits forever."""
    if len(args) < 2:
        raise RedisError("BLPOP requires at least 2 arguments")
    keys, timeout_text = args[:-1], args[-1]
    try:
        timeout = _parse_float(timeout_text)
    except ValueError as exc:
        raise RedisError(f"invalid timeout: {exc}") from None
    if timeout < 0:
        raise RedisError("timeout is not a positive number or zero")

    store = req.state.store
    for key in keys:
        source = _existing_list(store, key)
        if source is None:
            continue
        popped = source.lpop(1)
        if popped:
            req.reply(bulk_array([key, popped[0]]))
            return

    results: "queue.Queue[Tuple[str, str]]" = queue.Queue(maxsize=1)
    wait = timeout if 0 < timeout < math.inf else None
    client_id = req.client.id
    try:
        for key in keys:
            _existing_list(store, key)
            store.register_list_push_handler(key, client_id, _KeyedWaiter(key, results))
        try:
            key, item = results.get(timeout=wait)
        except queue.Empty:
            req.reply(NIL_ARRAY)
            return
        target = store.get_exact(key, ValueType.LIST)
        if isinstance(target, RedisList):
            target.lpop(1)
        req.reply(bulk_array([key, item]))
    finally:
        for key in keys:
            store.unregister_list_push_handler(key, client_id)