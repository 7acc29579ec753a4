"""Handlers for connection, string, keyspace and server-information commands."""

from __future__ import annotations

import re
import time
from typing import List

from minikv.request import Request
from minikv.resp import (
    NIL_ARRAY,
    NIL_BULK_STRING,
    RedisError,
    bulk_array,
    bulk_string,
    integer,
    simple_string,
)
from minikv.store import ValueType

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def _parse_int64(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"value out of range: {text!r}")
    return value


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


def ping(req: Request, args: List[str]) -> None:
    """Reply PONG; silent for commands propagated from a master."""
    if req.propagated:
        return
    if req.sub_mode:
        req.reply(bulk_array(["pong", ""]))
        return
    req.reply(simple_string("PONG"))


def echo(req: Request, args: List[str]) -> None:
    if not args:
        raise RedisError("ECHO requires at least one argument")
    req.reply(simple_string(args[0]))


def get(req: Request, args: List[str]) -> None:
    if len(args) != 1:
        raise RedisError("Usage: GET <key>")
    value = req.state.store.get_exact(args[0], ValueType.STRING)
    if not isinstance(value, str):
        req.reply(NIL_ARRAY)
        return
    req.reply(simple_string(value))


def set_value(req: Request, args: List[str]) -> None:
    """SET key value [PX millis | EX seconds]."""
    if len(args) < 2:
        raise RedisError("SET requires at least two arguments")
    key, value, *options = args

    expire_ms = 0
    if options:
        unit = options[0].upper()
        if unit in ("PX", "EX"):
            if len(options) < 2:
                raise RedisError("invalid expiration time: missing value")
            try:
                amount = _parse_int64(options[1])
            except ValueError as exc:
                raise RedisError(f"invalid expiration time: {exc}") from None
            if amount < 0:
                raise RedisError("invalid expiration time: must not be negative")
            expire_ms = amount * 1000 if unit == "EX" else amount

    expire_at = _now_millis() + expire_ms if expire_ms > 0 else None
    req.state.store.set(key, value, ValueType.STRING, expire_at)

    if req.propagated:
        return
    req.reply(simple_string("OK"))


def incr(req: Request, args: List[str]) -> None:
    if not args:
        raise RedisError("INCR requires at least 1 argument")
    key = args[0]
    store = req.state.store

    current = store.get_exact(key, ValueType.STRING)
    if current is None:
        store.set(key, "1", ValueType.STRING)
        req.reply(integer(1))
        return
    if not isinstance(current, str):
        raise RedisError("value is not a string")
    try:
        number = _parse_int64(current)
    except ValueError:
        raise RedisError("value is not an integer or out of range") from None

    # The counter wraps around like a signed 64-bit integer.
    number = _INT64_MIN if number == _INT64_MAX else number + 1
    store.set(key, str(number), ValueType.STRING)
    req.reply(integer(number))


def type_of(req: Request, args: List[str]) -> None:
    if len(args) != 1:
        raise RedisError("TYPE requires exactly one argument")
    req.reply(simple_string(req.state.store.type_of(args[0]).value))


def keys(req: Request, args: List[str]) -> None:
    if not args:
        raise RedisError("keys requires at least one argument")
    if args[0] != "*":
        raise RedisError("only wildcard '*' is supported")
    req.reply(bulk_array(req.state.store.keys()))


def _config_value(req: Request, name: str) -> str:
    config = req.state.config
    if name == "dir":
        return config.dir
    if name == "dbfilename":
        return config.dbfilename
    raise RedisError(f"unknown configuration parameter: {name}")


def config(req: Request, args: List[str]) -> None:
    """CONFIG GET dir|dbfilename; other subcommands reply with a null bulk string."""
    if len(args) < 2:
        raise RedisError("CONFIG requires at least two arguments")
    name = args[1].lower()
    if args[0].upper() == "GET":
        req.reply(bulk_array([name, _config_value(req, name)]))
        return
    req.reply(NIL_BULK_STRING)


def info(req: Request, args: List[str]) -> None:
    """INFO replication."""
    if not args:
        raise RedisError("INFO requires at least one argument")
    if args[0] != "replication":
        raise RedisError("only 'replication' section is supported")

    snapshot = req.state.snapshot()
    role = "slave" if snapshot.is_replica else "master"
    text = "# Replication\r\n" + "role:" + role + "\r\n"
    if not snapshot.is_replica:
        text += (
            "master_replid:" + snapshot.replication_id + "\r\n"
            + "master_repl_offset:" + str(snapshot.replication_offset) + "\r\n"
        )
    req.reply(bulk_string(text))