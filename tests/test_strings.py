import io
import time

import pytest

from minikv.client import Client
from minikv.commands.strings import (
    config,
    echo,
    get,
    incr,
    info,
    keys,
    ping,
    set_value,
    type_of,
)
from minikv.config import Config
from minikv.redislist import RedisList
from minikv.request import Request
from minikv.resp import (
    NIL_ARRAY,
    NIL_BULK_STRING,
    RedisError,
    bulk_array,
    bulk_string,
    decode,
    integer,
    simple_string,
)
from minikv.state import AppState, ReplicationState
from minikv.store import Store, ValueType


class _Sink:
    def __init__(self):
        self.data = bytearray()

    def sendall(self, data):
        self.data += data

    def getpeername(self):
        return ("127.0.0.1", 5000)

    def close(self):
        pass


def make_request(cfg=None, is_replica=False):
    sink = _Sink()
    state = AppState(
        ReplicationState(is_replica=is_replica, replication_id="abc"),
        cfg or Config(),
        Store(),
    )
    return Request(Client(sink), state), sink


def replies(sink):
    raw = bytes(sink.data)
    stream = io.BytesIO(raw)
    out = []
    while stream.tell() < len(raw):
        out.append(decode(stream)[0])
    return out


def test_ping_wire_form():
    req, sink = make_request()
    ping(req, [])
    assert bytes(sink.data) == b"+PONG\r\n"


def test_ping_in_subscribe_mode():
    req, sink = make_request()
    req.sub_mode = True
    ping(req, [])
    assert replies(sink) == [bulk_array(["pong", ""])]


def test_ping_propagated_is_silent():
    req, sink = make_request()
    req.propagated = True
    ping(req, [])
    assert bytes(sink.data) == b""


def test_echo_returns_argument():
    req, sink = make_request()
    echo(req, ["hello"])
    assert replies(sink) == [simple_string("hello")]


def test_echo_without_arguments():
    req, _ = make_request()
    with pytest.raises(RedisError, match="ECHO requires"):
        echo(req, [])


def test_set_then_get_round_trip():
    req, sink = make_request()
    set_value(req, ["name", "value"])
    get(req, ["name"])
    assert replies(sink) == [simple_string("OK"), simple_string("value")]


def test_get_missing_key_is_nil_array():
    req, sink = make_request()
    get(req, ["missing"])
    assert bytes(sink.data) == b"*-1\r\n"


def test_get_requires_one_argument():
    req, _ = make_request()
    with pytest.raises(RedisError, match="Usage: GET"):
        get(req, [])


def test_get_on_list_is_nil():
    req, sink = make_request()
    req.state.store.set("items", RedisList(["a"]), ValueType.LIST)
    get(req, ["items"])
    assert replies(sink) == [NIL_ARRAY]


def test_set_with_px_expires():
    req, sink = make_request()
    set_value(req, ["temp", "v", "PX", "1"])
    time.sleep(0.05)
    get(req, ["temp"])
    assert replies(sink) == [simple_string("OK"), NIL_ARRAY]


def test_set_with_ex_keeps_value():
    req, sink = make_request()
    set_value(req, ["temp", "v", "ex", "100"])
    get(req, ["temp"])
    assert replies(sink)[-1] == simple_string("v")


@pytest.mark.parametrize("option", [["PX", "abc"], ["EX", "-1"], ["PX"]])
def test_set_invalid_expiry(option):
    req, _ = make_request()
    with pytest.raises(RedisError, match="invalid expiration time"):
        set_value(req, ["k", "v", *option])


def test_set_propagated_writes_no_reply():
    req, sink = make_request()
    req.propagated = True
    set_value(req, ["k", "v"])
    assert bytes(sink.data) == b""
    assert req.state.store.get_exact("k", ValueType.STRING) == "v"


def test_set_requires_two_arguments():
    req, _ = make_request()
    with pytest.raises(RedisError, match="SET requires"):
        set_value(req, ["k"])


def test_incr_missing_key_starts_at_one():
    req, sink = make_request()
    incr(req, ["counter"])
    assert replies(sink) == [integer(1)]
    assert req.state.store.get_exact("counter", ValueType.STRING) == "1"


def test_incr_existing_value():
    req, _ = make_request()
    req.state.store.set("counter", "41", ValueType.STRING)
    incr(req, ["counter"])
    assert req.state.store.get_exact("counter", ValueType.STRING) == "42"


def test_incr_reply_matches_stored_value():
    req, sink = make_request()
    incr(req, ["counter"])
    incr(req, ["counter"])
    stored = req.state.store.get_exact("counter", ValueType.STRING)
    assert replies(sink)[-1] == integer(int(stored))


def test_incr_non_integer():
    req, _ = make_request()
    req.state.store.set("counter", "abc", ValueType.STRING)
    with pytest.raises(RedisError, match="not an integer or out of range"):
        incr(req, ["counter"])


def test_type_of_string_and_missing():
    req, sink = make_request()
    req.state.store.set("k", "v", ValueType.STRING)
    type_of(req, ["k"])
    type_of(req, ["absent"])
    assert bytes(sink.data) == b"+string\r\n+none\r\n"


def test_type_of_requires_one_argument():
    req, _ = make_request()
    with pytest.raises(RedisError, match="TYPE requires"):
        type_of(req, [])


def test_keys_lists_all_keys():
    req, sink = make_request()
    req.state.store.set("a", "1", ValueType.STRING)
    req.state.store.set("b", "2", ValueType.STRING)
    keys(req, ["*"])
    (reply,) = replies(sink)
    assert sorted(item.value for item in reply.value) == ["a", "b"]


def test_keys_rejects_patterns():
    req, _ = make_request()
    with pytest.raises(RedisError, match="only wildcard"):
        keys(req, ["a*"])


def test_config_get_dir():
    req, sink = make_request(Config(dir="/tmp/data", dbfilename="dump.rdb"))
    config(req, ["GET", "DIR"])
    config(req, ["get", "dbfilename"])
    assert replies(sink) == [
        bulk_array(["dir", "/tmp/data"]),
        bulk_array(["dbfilename", "dump.rdb"]),
    ]


def test_config_unknown_parameter():
    req, _ = make_request()
    with pytest.raises(RedisError, match="unknown configuration parameter: port"):
        config(req, ["GET", "port"])


def test_config_other_subcommand_is_nil():
    req, sink = make_request()
    config(req, ["SET", "dir"])
    assert replies(sink) == [NIL_BULK_STRING]


def test_info_master():
    req, sink = make_request()
    info(req, ["replication"])
    expected = (
        "# Replication\r\nrole:master\r\nmaster_replid:abc\r\nmaster_repl_offset:0\r\n"
    )
    assert replies(sink) == [bulk_string(expected)]


def test_info_replica():
    req, sink = make_request(is_replica=True)
    info(req, ["replication"])
    assert replies(sink) == [bulk_string("# Replication\r\nrole:slave\r\n")]


def test_info_other_section():
    req, _ = make_request()
    with pytest.raises(RedisError, match="only 'replication'"):
        info(req, ["server"])