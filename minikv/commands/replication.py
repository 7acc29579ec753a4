"""Handlers for replication: PSYNC, REPLCONF and WAIT."""

from __future__ import annotations

import base64
import logging
import queue
import re
import threading
import time
import uuid
from typing import List

from minikv.request import Request
from minikv.resp import RedisError, bulk_array, integer, simple_string
from minikv.state import AppState, Replica

log = logging.getLogger(__name__)

# An RDB snapshot of an empty database, sent to replicas on full resync.
_EMPTY_RDB = base64.b64decode(
    "UkVESVMwMDEx+glyZWRpcy12ZXIFNy4yLjD6CnJlZGlzLWJpdHPAQPoFY3RpbWXCbQi8ZfoIdXNl"
    "ZC1tZW3CsMQQAPoIYW9mLWJhc2XAAP/wbjv+wP9aog=="
)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_TICK_SECONDS = 0.1
_POLL_SECONDS = 0.05


def _parse_int64(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"value out of range: {text!r}")
    return value


def psync(req: Request, args: List[str]) -> None:
    """PSYNC ? -1: full resynchronisation with an empty snapshot."""
    if len(args) < 2:
        raise RedisError("PSYNC requires at least 2 arguments")
    if args[0] != "?" or args[1] != "-1":
        raise RedisError("PSYNC only supports ? -1 for now")

    snapshot = req.state.snapshot()
    req.reply(
        simple_string(
            f"FULLRESYNC {snapshot.replication_id} {snapshot.replication_offset}"
        )
    )
    req.state.add_replica(req.client)

    try:
        req.client.write(b"$%d\r\n" % len(_EMPTY_RDB))
    except OSError as exc:
        raise RedisError(f"failed to write RDB header: {exc}") from exc
    try:
        req.client.write(_EMPTY_RDB)
    except OSError as exc:
        raise RedisError(f"failed to write RDB file: {exc}") from exc


def _getack(req: Request, args: List[str]) -> None:
    if len(args) != 1:
        raise RedisError("REPLCONF GETACK requires exactly one argument")
    offset = req.state.snapshot().replication_offset
    req.reply(bulk_array(["REPLCONF", "ACK", str(offset)]))


def _ack(req: Request, args: List[str]) -> None:
    if len(args) != 1:
        raise RedisError("REPLCONF ACK requires exactly one argument")
    try:
        offset = _parse_int64(args[0])
    except ValueError:
        raise RedisError(f"invalid offset: {args[0]}") from None

    replica = req.state.get_replica(req.client.id)
    if replica is None:
        raise RedisError(f"client is not a replica, {req.client.remote_address()}")
    replica.offset = offset
    log.info("Replica %s acknowledged offset %d", req.client.id, offset)

    while not replica.done.is_set():
        try:
            replica.offsets.put_nowait(offset)
            return
        except queue.Full:
            try:
                replica.offsets.get_nowait()
            except queue.Empty:
                pass
    raise RedisError("replica context canceled")


def replconf(req: Request, args: List[str]) -> None:
    """REPLCONF GETACK | ACK <offset> | anything else (acknowledged with OK)."""
    if not args:
        raise RedisError("REPLCONF requires at least one argument")
    subcommand = args[0].upper()
    if subcommand == "GETACK":
        _getack(req, args[1:])
    elif subcommand == "ACK":
        _ack(req, args[1:])
    else:
        req.reply(simple_string("OK"))


def _await_ack(
    app: AppState,
    replica: Replica,
    deadline: float,
    events: "queue.Queue[tuple]",
) -> None:
    try:
        while not replica.done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                acked = replica.offsets.get(timeout=min(_POLL_SECONDS, remaining))
            except queue.Empty:
                continue
            if acked >= app.snapshot().replication_offset:
                events.put(("synced", replica.client.id))
            return
    finally:
        events.put(("done", replica.client.id))


def wait(req: Request, args: List[str]) -> None:
    """WAIT numreplicas timeout: count replicas that caught up with this server."""
    if len(args) < 2:
        raise RedisError("WAIT requires at least two arguments")
    try:
        wanted = _parse_int64(args[0])
    except ValueError as exc:
        raise RedisError(f"invalid replication count: {exc}") from None
    if wanted < 0:
        raise RedisError("replication count cannot be negative")
    try:
        timeout_ms = _parse_int64(args[1])
    except ValueError as exc:
        raise RedisError(f"invalid timeout: {exc}") from None
    if timeout_ms < 0:
        raise RedisError("timeout cannot be negative")

    if wanted == 0:
        req.reply(integer(0))
        return

    app = req.state
    start = time.monotonic()
    deadline = start + timeout_ms / 1000
    getack = bulk_array(["REPLCONF", "GETACK", "*"]).encode()

    master_offset = app.snapshot().replication_offset
    acked = {rep.client.id for rep in app.replicas() if rep.offset >= master_offset}
    jobs: set[uuid.UUID] = set()
    events: "queue.Queue[tuple]" = queue.Queue()
    next_tick = start + _TICK_SECONDS

    while len(acked) < wanted:
        now = time.monotonic()
        if now >= deadline:
            break
        if now >= next_tick:
            next_tick = now + _TICK_SECONDS
            for rep in app.replicas():
                rep_id = rep.client.id
                if rep_id in acked or rep_id in jobs:
                    continue
                try:
                    rep.client.write(getack)
                except OSError as exc:
                    log.warning("Error writing to replica %s: %s", rep_id, exc)
                    continue
                threading.Thread(
                    target=_await_ack, args=(app, rep, deadline, events), daemon=True
                ).start()
                jobs.add(rep_id)
            continue
        try:
            event, rep_id = events.get(timeout=min(next_tick, deadline) - now)
        except queue.Empty:
            continue
        if event == "synced":
            acked.add(rep_id)
        else:
            jobs.discard(rep_id)

    req.reply(integer(len(acked)))