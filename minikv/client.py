"""A connected client and the lock-protected writes made to it."""

from __future__ import annotations

import socket
import threading
import uuid

from minikv.resp import RespValue


class Client:
    """One peer connection, identified by a random UUID."""

    def __init__(self, sock: socket.socket) -> None:
        self.id = uuid.uuid4()
        self._sock = sock
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        """Send all of ``data``; return the number of bytes written.

        Raises OSError when the connection cannot be written to.
        """
        with self._lock:
            self._sock.sendall(data)
        return len(data)

    def write_resp(self, value: RespValue) -> int:
        """Send the wire encoding of ``value``."""
        return self.write(value.encode())

    def close(self) -> None:
        self._sock.close()

    def remote_address(self) -> str:
        """The peer address as ``host:port``, or ``unknown`` when it has none."""
        try:
            peer = self._sock.getpeername()
        except OSError:
            return "unknown"
        if isinstance(peer, tuple):
            host, port = peer[0], peer[1]
            if ":" in host:
                return f"[{host}]:{port}"
            return f"{host}:{port}"
        if isinstance(peer, bytes):
            peer = peer.decode("utf-8", "replace")
        return str(peer) or "unknown"