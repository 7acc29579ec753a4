"""Handlers for publish/subscribe: SUBSCRIBE, UNSUBSCRIBE and PUBLISH."""

from __future__ import annotations

import logging
from typing import List

from minikv.request import Request
from minikv.resp import RedisError, RespValue, array, bulk_string, integer

log = logging.getLogger(__name__)


def _notice(req: Request, value: RespValue) -> None:
    try:
        req.client.write_resp(value)
    except OSError as exc:
        log.warning("failed to write to %s: %s", req.client.id, exc)


def subscribe(req: Request, args: List[str]) -> None:
    """Subscribe to each channel and enter subscribe mode."""
    if not args:
        raise RedisError("SUBSCRIBE requires at least one argument")
    for channel in args:
        sub = req.state.add_subscriber(req.client, channel)
        _notice(
            req,
            array([bulk_string("subscribe"), bulk_string(channel), integer(len(sub.channels))]),
        )
    req.sub_mode = True


def unsubscribe(req: Request, args: List[str]) -> None:
    if not args:
        raise RedisError("UNSUBSCRIBE requires at least one argument")
    for channel in args:
        sub = req.state.unsubscribe(req.client.id, channel)
        remaining = 0 if sub is None else len(sub.channels)
        _notice(
            req,
            array([bulk_string("unsubscribe"), bulk_string(channel), integer(remaining)]),
        )


def publish(req: Request, args: List[str]) -> None:
    """PUBLISH channel message; reply with the number of subscribers reached."""
    if len(args) != 2:
        raise RedisError("PUBLISH requires exactly 2 arguments")
    channel, message = args
    sent = req.state.publish(channel, message.encode("utf-8", "surrogateescape"))
    req.reply(integer(sent))