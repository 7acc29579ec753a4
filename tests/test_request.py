import socket

import pytest

from minikv.client import Client
from minikv.config import Config
from minikv.request import Command, Request, Transaction, parse_command
from minikv.resp import (
    NIL_ARRAY,
    ProtocolError,
    RedisError,
    array,
    bulk_array,
    bulk_string,
    error_value,
    integer,
    simple_string,
)
from minikv.state import AppState, ReplicationState
from minikv.store import Store


def _read(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        assert chunk, "peer closed early"
        data += chunk
    return data


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    left.settimeout(5)
    right.settimeout(5)
    yield Client(left), right
    left.close()
    right.close()


@pytest.fixture
def req(pair):
    client, _ = pair
    app = AppState(ReplicationState(), Config(), Store())
    return Request(client, app)


def test_parse_command_uppercases_name():
    cmd = parse_command(bulk_array(["set", "k", "v"]))
    assert cmd == Command("SET", ("k", "v"))


def test_parse_command_without_args():
    assert parse_command(bulk_array(["ping"])).args == ()


def test_parse_command_rejects_non_array():
    with pytest.raises(ProtocolError, match="expected RESP array"):
        parse_command(simple_string("PING"))


@pytest.mark.parametrize("value", [array(()), NIL_ARRAY])
def test_parse_command_rejects_empty(value):
    with pytest.raises(ProtocolError, match="at least one element"):
        parse_command(value)


def test_parse_command_rejects_non_bulk_name():
    with pytest.raises(ProtocolError, match="first element"):
        parse_command(array([simple_string("PING")]))


def test_parse_command_rejects_nil_name():
    with pytest.raises(ProtocolError, match="first element"):
        parse_command(array([bulk_string(None)]))


def test_parse_command_rejects_non_bulk_argument():
    with pytest.raises(ProtocolError, match="is not a string"):
        parse_command(array([bulk_string("ECHO"), integer(1)]))


def test_parse_command_rejects_nil_argument():
    with pytest.raises(ProtocolError, match="cannot be nil"):
        parse_command(array([bulk_string("ECHO"), bulk_string(None)]))


def test_transaction_collects_responses():
    txn = Transaction()
    txn.write_resp(simple_string("OK"))
    txn.write_resp(integer(3))
    assert txn.responses == [simple_string("OK"), integer(3)]


def test_start_and_discard_transaction(req):
    assert not req.in_transaction()
    req.start_transaction()
    assert req.in_transaction()
    req.discard_transaction()
    assert not req.in_transaction()


def test_exec_empty_transaction(req):
    req.start_transaction()
    assert req.exec_transaction() is None
    assert not req.in_transaction()


def test_exec_without_multi_raises(req):
    with pytest.raises(RedisError):
        req.exec_transaction()


def test_exec_collects_handler_replies_and_errors(req):
    def joined(r, args):
        r.reply(simple_string(" ".join(args)))

    def failing(r, args):
        raise RedisError("boom")

    req.start_transaction()
    req.transaction.commands.append((Command("ECHO", ("a", "b")), joined))
    req.transaction.commands.append((Command("BAD"), failing))
    results = req.exec_transaction()
    assert results == [simple_string("a b"), error_value("boom")]
    assert not req.in_transaction()


def test_writer_is_client_unless_executing(req):
    assert req.writer() is req.client
    req.start_transaction()
    assert req.writer() is req.client
    req.transaction.executing = True
    assert req.writer() is req.transaction


def test_reply_goes_to_client(req, pair):
    _, peer = pair
    value = simple_string("PONG")
    req.reply(value)
    assert _read(peer, len(value.encode())) == value.encode()


def test_reply_on_closed_connection_raises(req):
    req.client.close()
    with pytest.raises(RedisError, match="failed to write response"):
        req.reply(simple_string("PONG"))