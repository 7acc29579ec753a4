"""Command table and dispatch: transactions, replica rules and write propagation."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List

from minikv.commands import lists, pubsub, replication, streams, strings
from minikv.request import Command, Handler, Request
from minikv.resp import EMPTY_ARRAY, RedisError, array, bulk_array, simple_string

log = logging.getLogger(__name__)


class CommandKind(enum.Enum):
    """Whether a command only reads the keyspace or changes it."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class CommandSpec:
    """How a command is run: its handler, its kind and whether subscribe mode allows it."""

    handler: Handler
    kind: CommandKind = CommandKind.READ
    allowed_in_sub_mode: bool = False


def multi(req: Request, args: List[str]) -> None:
    """Start queueing commands until EXEC or DISCARD."""
    req.start_transaction()
    req.reply(simple_string("OK"))


_WRITE = CommandKind.WRITE

COMMANDS: Dict[str, CommandSpec] = {
    "PING": CommandSpec(strings.ping, allowed_in_sub_mode=True),
    "ECHO": CommandSpec(strings.echo),
    "SET": CommandSpec(strings.set_value, _WRITE),
    "GET": CommandSpec(strings.get),
    "CONFIG": CommandSpec(strings.config),
    "KEYS": CommandSpec(strings.keys),
    "INFO": CommandSpec(strings.info),
    "REPLCONF": CommandSpec(replication.replconf),
    "PSYNC": CommandSpec(replication.psync),
    "WAIT": CommandSpec(replication.wait),
    "TYPE": CommandSpec(strings.type_of),
    "XADD": CommandSpec(streams.xadd, _WRITE),
    "XRANGE": CommandSpec(streams.xrange),
    "XREAD": CommandSpec(streams.xread),
    "INCR": CommandSpec(strings.incr, _WRITE),
    "MULTI": CommandSpec(multi),
    "LPUSH": CommandSpec(lists.lpush, _WRITE),
    "RPUSH": CommandSpec(lists.rpush, _WRITE),
    "LRANGE": CommandSpec(lists.lrange),
    "LLEN": CommandSpec(lists.llen),
    "LPOP": CommandSpec(lists.lpop, _WRITE),
    "BLPOP": CommandSpec(lists.blpop, _WRITE),
    "RPOP": CommandSpec(lists.rpop, _WRITE),
    "SUBSCRIBE": CommandSpec(pubsub.subscribe, allowed_in_sub_mode=True),
    "UNSUBSCRIBE": CommandSpec(pubsub.unsubscribe, allowed_in_sub_mode=True),
    "PUBLISH": CommandSpec(pubsub.publish, _WRITE, allowed_in_sub_mode=True),
}


def _propagate(req: Request, cmd: Command) -> None:
    encoded = bulk_array([cmd.name, *cmd.args]).encode()
    req.state.advance_offset(len(encoded))
    for replica in req.state.replicas():
        try:
            replica.client.write(encoded)
        except OSError as exc:
            log.warning(
                "failed to propagate command to replica %s: %s",
                replica.client.remote_address(),
                exc,
            )


def run_command(req: Request, cmd: Command) -> None:
    """Run one command for the request; raise RedisError to report a failure."""
    if cmd.name == "EXEC":
        if not req.in_transaction():
            raise RedisError("EXEC without MULTI")
        replies = req.exec_transaction()
        req.reply(EMPTY_ARRAY if replies is None else array(replies))
        return

    if cmd.name == "DISCARD":
        if not req.in_transaction():
            raise RedisError("DISCARD without MULTI")
        req.discard_transaction()
        req.reply(simple_string("OK"))
        return

    spec = COMMANDS.get(cmd.name)
    if spec is None:
        raise RedisError(f"unknown command: {cmd.name}")

    is_replica = req.state.snapshot().is_replica
    if spec.kind is CommandKind.WRITE and is_replica and not req.propagated:
        raise RedisError("replica cannot execute write commands")

    if req.in_transaction():
        if cmd.name == "MULTI":
            raise RedisError("MULTI calls can not be nested")
        req.transaction.commands.append((cmd, spec.handler))
        req.reply(simple_string("QUEUED"))
        return

    if req.sub_mode and not spec.allowed_in_sub_mode:
        raise RedisError(
            f"Can't execute '{cmd.name}': only (P|S)SUBSCRIBE / (P|S)UNSUBSCRIBE "
            "/ PING / QUIT / RESET are allowed in this context"
        )

    spec.handler(req, list(cmd.args))

    if spec.kind is CommandKind.WRITE and not is_replica:
        _propagate(req, cmd)