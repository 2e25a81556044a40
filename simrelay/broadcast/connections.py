"""
Connection registry.

id → Connection for every open producer (/input) and consumer (/output)
socket. Entries remove themselves when their handle reports close or error;
removal is idempotent because both usually fire for the same socket.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Protocol

from simrelay.models import ConnectionRole, ServerStats

log = logging.getLogger(__name__)


class ConnectionHandle(Protocol):
    @property
    def writable(self) -> bool: ...

    def send(self, payload: str) -> None: ...

    def close(self) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None: ...

    def on_error(self, callback: Callable[[BaseException], None]) -> None: ...


@dataclass
class Connection:
    id: str
    role: ConnectionRole
    handle: ConnectionHandle
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    simulator_id: Optional[int] = None

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._started = time.monotonic()

    def register(self, handle: ConnectionHandle, role: ConnectionRole) -> str:
        conn_id = str(uuid.uuid4())
        self._connections[conn_id] = Connection(id=conn_id, role=role, handle=handle)
        handle.on_close(lambda: self.remove(conn_id))
        handle.on_error(lambda exc: self._on_error(conn_id, exc))
        log.info("%s connected (%s)", role.capitalize(), conn_id)
        return conn_id

    def _on_error(self, conn_id: str, exc: BaseException) -> None:
        log.error("Error on connection %s: %s", conn_id, exc)
        self.remove(conn_id)

    def remove(self, conn_id: str) -> None:
        conn = self._connections.pop(conn_id, None)
        if conn is None:
            return
        log.info("%s disconnected (%s)", conn.role.capitalize(), conn_id)
        try:
            conn.handle.close()
        except Exception as exc:
            # Usually already closed by the peer.
            log.debug("Ignoring close error on %s: %s", conn_id, exc)

    def bind_simulator(self, conn_id: str, simulator_id: int) -> None:
        conn = self._connections.get(conn_id)
        if conn is None or conn.role != "producer":
            return
        if conn.simulator_id != simulator_id:
            log.debug("Connection %s bound to simulator %d", conn_id, simulator_id)
        conn.simulator_id = simulator_id
        conn.touch()

    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def connections(self, role: Optional[ConnectionRole] = None) -> Iterator[Connection]:
        # Snapshot, so handlers may remove entries mid-iteration.
        for conn in list(self._connections.values()):
            if role is None or conn.role == role:
                yield conn

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def uptime(self) -> int:
        return int(time.monotonic() - self._started)

    def stats(self, total_messages: int = 0) -> ServerStats:
        producers = list(self.connections("producer"))
        consumers = list(self.connections("consumer"))
        simulators = sorted({c.simulator_id for c in producers if c.simulator_id is not None})
        return ServerStats(
            producers=len(producers),
            consumers=len(consumers),
            total_messages=total_messages,
            uptime=self.uptime,
            active_simulators=simulators,
        )

    def disconnect_all(self) -> None:
        log.info("Disconnecting %d client(s)", len(self._connections))
        for conn_id in list(self._connections):
            self.remove(conn_id)
