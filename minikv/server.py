"""The network server: client connections, the master link and the entry point."""

from __future__ import annotations

import logging
import re
import socket
import sys
import threading
from typing import BinaryIO, List, Optional, Sequence

from minikv.client import Client
from minikv.config import Config, parse_args
from minikv.dispatch import run_command
from minikv.request import Request, parse_command
from minikv.resp import (
    ProtocolError,
    RedisError,
    RespKind,
    bulk_array,
    decode_exact,
    error_value,
)
from minikv.state import AppState, ReplicationState
from minikv.store import Store

log = logging.getLogger(__name__)

REPLICATION_ID = "8371b4fb1155b71f4a04d3e1bc3e18c4a990aeeb"
_INT_RE = re.compile(r"[+-]?[0-9]+")


def initialize(config: Config) -> AppState:
    """Build the shared state; a replica also completes its handshake with the master.

    Raises ConnectionError when the handshake fails.
    """
    is_replica = bool(config.master_host) and config.master_port != 0
    app = AppState(
        ReplicationState(
            is_replica=is_replica,
            master_replication_id="",
            replication_id=REPLICATION_ID,
            replication_offset=0,
        ),
        config,
        Store(),
    )
    if is_replica:
        try:
            replication_handshake(app)
        except ConnectionError as exc:
            raise ConnectionError(
                f"failed to initialize replication handshake: {exc}"
            ) from exc
    return app


def handle_connection(sock: socket.socket, app: AppState) -> None:
    """Serve one client until it disconnects."""
    client = Client(sock)
    reader = sock.makefile("rb")
    req = Request(client, app)
    try:
        while True:
            try:
                value, _ = decode_exact(reader, RespKind.ARRAY)
                command = parse_command(value)
                log.debug("Received command: %s", command.name)
                run_command(req, command)
            except EOFError:
                log.info("Connection closed by client: %s", client.remote_address())
                return
            except RedisError as exc:
                try:
                    client.write_resp(error_value(exc))
                except OSError:
                    return
    except OSError as exc:
        log.info("Connection to %s lost: %s", client.remote_address(), exc)
    finally:
        app.remove_replica(client.id)
        app.remove_subscriber(client.id)
        reader.close()
        sock.close()


def serve_master(app: AppState, sock: socket.socket, reader: BinaryIO) -> None:
    """Apply the command stream sent by the master, counting the bytes processed."""
    client = Client(sock)
    req = Request(client, app, propagated=True)
    try:
        while True:
            try:
                value, size = decode_exact(reader, RespKind.ARRAY)
            except EOFError:
                log.info("Lost connection to master")
                return
            except ProtocolError as exc:
                log.warning("Error reading from master: %s", exc)
                continue
            try:
                command = parse_command(value)
            except ProtocolError as exc:
                log.warning("Error parsing command from master: %s", exc)
                continue
            log.debug("Received command from master: %s", command.name)
            try:
                run_command(req, command)
            except RedisError as exc:
                log.warning("Error executing command from master: %s", exc)
                continue
            app.advance_offset(size)
    except OSError as exc:
        log.info("Lost connection to master: %s", exc)
    finally:
        reader.close()
        sock.close()
        log.info("Master connection closed")


def _send(sock: socket.socket, words: List[str], what: str) -> None:
    try:
        sock.sendall(bulk_array(words).encode())
    except OSError as exc:
        raise ConnectionError(f"failed to send {what} command: {exc}") from exc


def _read_simple(reader: BinaryIO) -> str:
    try:
        value, _ = decode_exact(reader, RespKind.STRING)
    except (EOFError, ProtocolError, OSError) as exc:
        raise ConnectionError(f"failed to read response from master server: {exc}") from exc
    return value.value


def _expect(reader: BinaryIO, expected: str) -> None:
    got = _read_simple(reader)
    if got != expected:
        raise ConnectionError(
            f"unexpected response from master server, expected '{expected}', got: {got}"
        )


def _read_snapshot(reader: BinaryIO) -> bytes:
    flag = reader.read(1)
    if not flag:
        raise ConnectionError("failed to read RDB file length: end of stream")
    if flag != b"$":
        raise ConnectionError(
            "unexpected response from master server when reading RDB file length, "
            f"expected '$', got: {flag.decode('latin-1')}"
        )
    line = reader.readline()
    if not line.endswith(b"\n"):
        raise ConnectionError("failed to read RDB file length: end of stream")
    text = line.decode("latin-1").removesuffix("\r\n")
    if not _INT_RE.fullmatch(text):
        raise ConnectionError(f"invalid RDB file length: {text!r}")
    length = int(text)
    if length <= 0:
        raise ConnectionError("invalid RDB file length, must be greater than 0")
    data = reader.read(length)
    if len(data) != length:
        raise ConnectionError("failed to read RDB file: end of stream")
    return data


def replication_handshake(app: AppState) -> threading.Thread:
    """Connect to the master, run PING/REPLCONF/PSYNC and start following it.

    Returns the thread that serves the master's command stream.
    Raises ConnectionError on any failure.
    """
    config = app.config
    address = (config.master_host, config.master_port)
    log.info("Connecting to master server at %s:%d...", *address)
    try:
        sock = socket.create_connection(address)
    except OSError as exc:
        raise ConnectionError(f"failed to connect to master server: {exc}") from exc

    reader = sock.makefile("rb")
    succeeded = False
    try:
        _send(sock, ["PING"], "PING")
        _expect(reader, "PONG")

        _send(sock, ["REPLCONF", "listening-port", str(config.port)], "REPLCONF listening-port")
        _expect(reader, "OK")

        _send(sock, ["REPLCONF", "capa", "psync2"], "REPLCONF capa")
        _expect(reader, "OK")

        _send(sock, ["PSYNC", "?", "-1"], "PSYNC")
        content = _read_simple(reader)
        if not content.startswith("FULLRESYNC "):
            raise ConnectionError(
                f"unexpected response from master server, expected 'FULLRESYNC', got: {content}"
            )
        parts = content.split(" ", 2)
        if len(parts) != 3:
            raise ConnectionError(
                "unexpected response format from master server, expected "
                f"'FULLRESYNC <replication_id> <offset>', got: {content}"
            )
        _, master_id, offset_text = parts
        if not master_id:
            raise ConnectionError("replication ID cannot be empty")
        if not _INT_RE.fullmatch(offset_text):
            raise ConnectionError(f"invalid replication offset: {offset_text!r}")
        app.set_master(master_id, int(offset_text))

        _read_snapshot(reader)
        app.set_store(Store())

        log.info("Connected to master server at %s:%d", *address)
        thread = threading.Thread(
            target=serve_master, args=(app, sock, reader), daemon=True
        )
        thread.start()
        succeeded = True
        return thread
    finally:
        if not succeeded:
            log.warning("Handshake failed, closing connection to %s:%d", *address)
            reader.close()
            sock.close()


def serve(app: AppState, host: str = "0.0.0.0", port: Optional[int] = None) -> None:
    """Accept connections forever, one thread per client.

    Raises OSError when the address cannot be bound.
    """
    if port is None:
        port = app.config.port
    with socket.create_server((host, port)) as listener:
        while listener.fileno() != -1:
            try:
                conn, _ = listener.accept()
            except OSError as exc:
                log.warning("Error accepting connection: %s", exc)
                continue
            threading.Thread(
                target=handle_connection, args=(conn, app), daemon=True
            ).start()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server from the command line; return the exit status."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        config = parse_args(argv)
    except ValueError as exc:
        print(f"Failed to parse flags: {exc}")
        return 1
    try:
        app = initialize(config)
    except ConnectionError as exc:
        print(f"Failed to initialize Redis: {exc}")
        return 1
    try:
        serve(app, "0.0.0.0", config.port)
    except KeyboardInterrupt:
        return 0
    except OSError:
        print(f"Failed to bind to port {config.port}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())