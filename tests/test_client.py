import socket

import pytest

from minikv.client import Client
from minikv.resp import bulk_array, simple_string


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


def test_write_sends_bytes_and_returns_length(pair):
    client, peer = pair
    assert client.write(b"hello") == 5
    assert _read(peer, 5) == b"hello"


def test_write_resp_sends_encoding(pair):
    client, peer = pair
    value = simple_string("PONG")
    written = client.write_resp(value)
    assert written == len(value.encode())
    assert _read(peer, written) == b"+PONG\r\n"


def test_write_resp_array_round_trip(pair):
    client, peer = pair
    value = bulk_array(["PING"])
    written = client.write_resp(value)
    assert _read(peer, written) == value.encode()


def test_ids_are_distinct():
    left, right = socket.socketpair()
    try:
        first, second = Client(left), Client(right)
        assert first.id != second.id
        assert first.id == first.id
    finally:
        left.close()
        right.close()


def test_write_after_close_raises(pair):
    client, _ = pair
    client.close()
    with pytest.raises(OSError):
        client.write(b"x")


def test_remote_address_of_tcp_connection():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    outgoing = socket.create_connection(server.getsockname(), timeout=5)
    accepted, _ = server.accept()
    try:
        host, port = outgoing.getsockname()
        assert Client(accepted).remote_address() == f"{host}:{port}"
    finally:
        accepted.close()
        outgoing.close()
        server.close()


def test_remote_address_after_close_is_unknown(pair):
    client, _ = pair
    client.close()
    assert client.remote_address() == "unknown"