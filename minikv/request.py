"""Parsed commands, per-connection request state and MULTI/EXEC transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

from minikv.client import Client
from minikv.resp import RedisError, RespKind, RespValue, error_value
from minikv.state import AppState

log = logging.getLogger(__name__)


class RespWriter(Protocol):
    """Anything a reply can be written to."""

    def write_resp(self, value: RespValue) -> object: ...


Handler = Callable[["Request", List[str]], None]

_KIND_NAMES = {
    RespKind.STRING: "RESPStr",
    RespKind.INTEGER: "RESPInt",
    RespKind.ARRAY: "RESPArr",
    RespKind.BULK_STRING: "RESPBulkStr",
    RespKind.ERROR: "RESPERR",
}


@dataclass(frozen=True)
class Command:
    """A command name, upper-cased, with its arguments."""

    name: str
    args: Tuple[str, ...] = ()


def parse_command(value: RespValue) -> Command:
    """Build a Command from an array of bulk strings; raise ProtocolError otherwise."""
    from minikv.resp import ProtocolError

    if value.kind is not RespKind.ARRAY:
        raise ProtocolError(f"expected RESP array, got {_KIND_NAMES[value.kind]}")
    items = value.value or ()
    if not items:
        raise ProtocolError("command array must have at least one element")
    head, *rest = items
    if head.kind is not RespKind.BULK_STRING or head.value is None:
        raise ProtocolError("first element of command array must be a bulk string")
    args = []
    for item in rest:
        if item.kind is not RespKind.BULK_STRING:
            raise ProtocolError(f"command argument {item!r} is not a string")
        if item.value is None:
            raise ProtocolError("command argument cannot be nil")
        args.append(item.value)
    return Command(head.value.upper(), tuple(args))


@dataclass
class Transaction:
    """Commands queued after MULTI, as (Command, handler) pairs, and their replies."""

    executing: bool = False
    commands: List[Tuple[Command, Handler]] = field(default_factory=list)
    responses: List[RespValue] = field(default_factory=list)

    def write_resp(self, value: RespValue) -> None:
        self.responses.append(value)


@dataclass(eq=False)
class Request:
    """The per-connection context handed to command handlers."""

    client: Client
    state: AppState
    transaction: Optional[Transaction] = None
    propagated: bool = False
    sub_mode: bool = False

    def start_transaction(self) -> None:
        self.transaction = Transaction()

    def exec_transaction(self) -> Optional[List[RespValue]]:
        """Run the queued commands and return their replies.

        Returns None when nothing was queued. The transaction ends either way.
        """
        transaction = self.transaction
        if transaction is None:
            raise RedisError("EXEC without MULTI")
        try:
            transaction.executing = True
            if not transaction.commands:
                return None
            for command, handler in transaction.commands:
                try:
                    handler(self, list(command.args))
                except Exception as exc:  # every failure becomes that command's reply
                    transaction.write_resp(error_value(exc))
            return list(transaction.responses)
        finally:
            self.transaction = None

    def discard_transaction(self) -> None:
        self.transaction = None

    def in_transaction(self) -> bool:
        return self.transaction is not None

    def writer(self) -> RespWriter:
        """Where replies go: the transaction while it executes, else the client."""
        if self.transaction is not None and self.transaction.executing:
            return self.transaction
        return self.client

    def reply(self, value: RespValue) -> None:
        """Write a reply; raise RedisError when the connection fails."""
        try:
            self.writer().write_resp(value)
        except OSError as exc:
            raise RedisError(f"failed to write response: {exc}") from exc
        log.debug("Response sent to %s", self.client.remote_address())