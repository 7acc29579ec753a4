"""Shared server state: replication info, the store, replicas and subscribers."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from minikv.client import Client
from minikv.config import Config
from minikv.resp import bulk_array
from minikv.store import Store

log = logging.getLogger(__name__)

SUBSCRIBER_BUFFER_SIZE = 16
_POLL_SECONDS = 0.1


@dataclass
class ReplicationState:
    """Role and replication progress of this server."""

    is_replica: bool = False
    master_replication_id: str = ""
    replication_id: str = ""
    replication_offset: int = 0


@dataclass(frozen=True)
class _Message:
    channel: str
    payload: bytes


@dataclass(eq=False)
class Replica:
    """A connected replica; ``offsets`` carries acknowledged offsets (one slot)."""

    client: Client
    offset: int = 0
    offsets: "queue.Queue[int]" = field(default_factory=lambda: queue.Queue(maxsize=1))
    done: threading.Event = field(default_factory=threading.Event)


@dataclass(eq=False)
class Subscriber:
    """A client in subscribe mode with its channels and pending messages."""

    client: Client
    channels: Set[str] = field(default_factory=set)
    messages: "queue.Queue[_Message]" = field(
        default_factory=lambda: queue.Queue(maxsize=SUBSCRIBER_BUFFER_SIZE)
    )
    done: threading.Event = field(default_factory=threading.Event)


def _deliver(sub: Subscriber) -> None:
    while not sub.done.is_set():
        try:
            message = sub.messages.get(timeout=_POLL_SECONDS)
        except queue.Empty:
            continue
        payload = message.payload.decode("utf-8", "surrogateescape")
        try:
            sub.client.write_resp(bulk_array(["message", message.channel, payload]))
        except OSError as exc:
            log.warning("failed to deliver message to %s: %s", sub.client.id, exc)


class AppState:
    """Everything the command handlers share, behind one lock."""

    def __init__(self, state: ReplicationState, config: Config, store: Store) -> None:
        self._lock = threading.RLock()
        self._state = state
        self._config = config
        self._store = store
        self._replicas: Dict[uuid.UUID, Replica] = {}
        self._subscribers: Dict[uuid.UUID, Subscriber] = {}
        self._channel_subs: Dict[str, Dict[uuid.UUID, Subscriber]] = {}

    def snapshot(self) -> ReplicationState:
        """A copy of the replication state."""
        with self._lock:
            return dataclasses.replace(self._state)

    def advance_offset(self, amount: int) -> int:
        """Add ``amount`` to the replication offset; return the new offset."""
        with self._lock:
            self._state.replication_offset += amount
            return self._state.replication_offset

    def set_master(self, replication_id: str, offset: int) -> None:
        """Record the master's replication ID and the starting offset."""
        with self._lock:
            self._state.master_replication_id = replication_id
            self._state.replication_offset = offset

    def set_store(self, store: Store) -> None:
        """Replace the keyspace; used during the replication handshake."""
        with self._lock:
            self._store = store

    @property
    def store(self) -> Store:
        with self._lock:
            return self._store

    @property
    def config(self) -> Config:
        """A copy of the configuration."""
        with self._lock:
            return dataclasses.replace(self._config)

    def add_subscriber(self, client: Client, channel: str) -> Subscriber:
        """Subscribe ``client`` to ``channel``, starting its delivery on first use."""
        with self._lock:
            sub = self._subscribers.get(client.id)
            if sub is None:
                sub = Subscriber(client)
                self._subscribers[client.id] = sub
                threading.Thread(target=_deliver, args=(sub,), daemon=True).start()
            sub.channels.add(channel)
            self._channel_subs.setdefault(channel, {})[client.id] = sub
        log.info("Subscriber connected: %s", client.remote_address())
        return sub

    def unsubscribe(self, client_id: uuid.UUID, channel: str) -> Optional[Subscriber]:
        """Drop one channel; return the subscriber, or None if the client never subscribed."""
        with self._lock:
            sub = self._subscribers.get(client_id)
            if sub is None:
                return None
            members = self._channel_subs.get(channel)
            if members is None or client_id not in members:
                return sub
            del members[client_id]
            sub.channels.discard(channel)
            return sub

    def remove_subscriber(self, client_id: uuid.UUID) -> None:
        with self._lock:
            sub = self._subscribers.pop(client_id, None)
            if sub is None:
                return
            sub.done.set()
            for channel in sub.channels:
                self._channel_subs.get(channel, {}).pop(client_id, None)
        log.info("Subscriber disconnected: %s", sub.client.remote_address())

    def publish(self, channel: str, payload: bytes) -> int:
        """Queue the message for each subscriber with room; return how many took it."""
        sent = 0
        with self._lock:
            for sub in self._channel_subs.get(channel, {}).values():
                try:
                    sub.messages.put_nowait(_Message(channel, payload))
                except queue.Full:
                    continue
                sent += 1
        return sent

    def add_replica(self, client: Client) -> Replica:
        with self._lock:
            replica = Replica(client)
            self._replicas[client.id] = replica
        log.info("Replica connected: %s", client.remote_address())
        return replica

    def remove_replica(self, client_id: uuid.UUID) -> None:
        with self._lock:
            replica = self._replicas.pop(client_id, None)
        if replica is None:
            return
        replica.done.set()
        log.info("Replica disconnected: %s", replica.client.remote_address())

    def get_replica(self, client_id: uuid.UUID) -> Optional[Replica]:
        with self._lock:
            return self._replicas.get(client_id)

    def replicas(self) -> List[Replica]:
        with self._lock:
            return list(self._replicas.values())