"""Connection registry — the set of live, authorized clients.

Learn: This is the only state shared between connect handlers, disconnect
handlers and the dispatcher. The lock is held just long enough to mutate
or copy the dict; fan-out iterates a snapshot, so nobody ever holds it
across a send.
"""

import itertools
import threading
from typing import Iterator, Optional

from bento_event_relay.realtime.connection import AuthState, ClientConnection


class ConnectionRegistry:
    def __init__(self):
        self._connections: dict[int, ClientConnection] = {}
        self._lock = threading.Lock()
        self._ids: Iterator[int] = itertools.count(1)

    def next_id(self) -> int:
        """Allocate a connection id. Ids are never reused."""
        with self._lock:
            return next(self._ids)

    def add(self, connection: ClientConnection) -> None:
        if connection.state is not AuthState.ALLOWED:
            raise ValueError(
                f"connection {connection.id} is {connection.state.value}, not allowed"
            )
        with self._lock:
            if connection.id in self._connections:
                raise ValueError(f"connection {connection.id} is already registered")
            self._connections[connection.id] = connection

    def remove(self, connection_id: int) -> Optional[ClientConnection]:
        """Remove a connection; a no-op for unknown ids."""
        with self._lock:
            return self._connections.pop(connection_id, None)

    def snapshot(self) -> tuple[ClientConnection, ...]:
        """Point-in-time copy of the current members."""
        with self._lock:
            return tuple(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
