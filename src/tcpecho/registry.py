from __future__ import annotations

import itertools
import socket
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

_ids = itertools.count(1)


class ConnectionState(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """One accepted socket. The handler serving it owns ``sock``."""

    sock: socket.socket
    peer: tuple
    id: int = field(default_factory=lambda: next(_ids))
    state: ConnectionState = ConnectionState.OPEN
    opened_at: float = field(default_factory=time.monotonic)
    bytes_echoed: int = 0

    def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already reset or disconnected.
            pass
        self.sock.close()
        self.state = ConnectionState.CLOSED


class ConnectionRegistry:
    """Thread-safe bookkeeping of open connections, keyed by connection identity.

    The registry only holds references for accounting; closing a connection's
    socket is up to whoever serves it.
    """

    def __init__(self, limit: int | None = None) -> None:
        if limit is not None and limit <= 0:
            raise ValueError(f"limit must be positive or None, got {limit}")
        self.limit = limit
        self._connections: dict[int, Connection] = {}
        self._changed = threading.Condition()

    def add(self, conn: Connection) -> bool:
        """Register ``conn``. Returns False (and adds nothing) when at ``limit``."""
        with self._changed:
            if self.limit is not None and len(self._connections) >= self.limit:
                return False
            self._connections[conn.id] = conn
            self._changed.notify_all()
            return True

    def remove(self, conn: Connection) -> bool:
        """Deregister ``conn``. Removing an absent connection is a no-op returning False."""
        with self._changed:
            if self._connections.get(conn.id) is not conn:
                return False
            del self._connections[conn.id]
            self._changed.notify_all()
            return True

    def size(self) -> int:
        with self._changed:
            return len(self._connections)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, conn: object) -> bool:
        if not isinstance(conn, Connection):
            return False
        with self._changed:
            return self._connections.get(conn.id) is conn

    def snapshot(self) -> list[Connection]:
        with self._changed:
            return list(self._connections.values())

    def wait_until_empty(self, timeout: float | None = None) -> bool:
        with self._changed:
            return self._changed.wait_for(lambda: not self._connections, timeout)
