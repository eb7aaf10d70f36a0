from __future__ import annotations

import logging
import socketserver
import sys
import time
from dataclasses import dataclass

from tcpecho.common import DEFAULT_PORT, BindError, TcpTarget
from tcpecho.registry import Connection, ConnectionRegistry, ConnectionState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    backlog: int = 1024
    chunk_size: int = 4096
    max_connections: int | None = None

    def __post_init__(self) -> None:
        # recv(0) returns b"" and would read as an immediate disconnect.
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.backlog < 0:
            raise ValueError(f"backlog must not be negative, got {self.backlog}")
        if self.max_connections is not None and self.max_connections <= 0:
            raise ValueError(f"max_connections must be positive or None, got {self.max_connections}")


def _format_peer(addr: tuple) -> str:
    return f"{addr[0]}:{addr[1]}" if len(addr) >= 2 else str(addr)


class _EchoHandler(socketserver.BaseRequestHandler):
    """Echoes every chunk back to its sender until the peer disconnects."""

    def setup(self) -> None:
        self.conn = Connection(self.request, self.client_address)
        self.registered = self.server.registry.add(self.conn)  # type: ignore[attr-defined]
        if self.registered:
            log.debug("accepted connection %d from %s", self.conn.id, _format_peer(self.client_address))
        else:
            log.warning(
                "connection limit reached (%d), refusing %s",
                self.server.registry.limit,  # type: ignore[attr-defined]
                _format_peer(self.client_address),
            )

    def handle(self) -> None:
        if not self.registered:
            return
        chunk_size = self.server.config.chunk_size  # type: ignore[attr-defined]
        try:
            while True:
                data = self.request.recv(chunk_size)
                if not data:
                    return
                self.request.sendall(data)
                self.conn.bytes_echoed += len(data)
                log.debug("connection %d echoed %d bytes", self.conn.id, len(data))
        except OSError as e:
            log.debug("connection %d failed: %s", self.conn.id, e)

    def finish(self) -> None:
        registry: ConnectionRegistry = self.server.registry  # type: ignore[attr-defined]
        self.conn.state = ConnectionState.CLOSING
        if registry.remove(self.conn):
            log.info(
                "closed connection %d after %.3fs (%d bytes echoed), %d connections left",
                self.conn.id,
                time.monotonic() - self.conn.opened_at,
                self.conn.bytes_echoed,
                len(registry),
            )
        self.conn.close()


class _ThreadingEchoServer(socketserver.ThreadingTCPServer):
    # Windows would let a second listener share the port with SO_REUSEADDR.
    allow_reuse_address = sys.platform != "win32"
    daemon_threads = True
    block_on_close = False

    def __init__(self, config: ServerConfig, registry: ConnectionRegistry) -> None:
        self.config = config
        self.registry = registry
        self.request_queue_size = config.backlog
        super().__init__((config.host, config.port), _EchoHandler)

    def handle_error(self, request, client_address) -> None:  # type: ignore[override]
        log.exception("unexpected error while serving %s", _format_peer(client_address))


class EchoServer:
    """TCP echo server that tracks its live connections in a ``ConnectionRegistry``.

    Each accepted connection is served on its own thread; the registry is the
    only state shared between them.
    """

    def __init__(self, config: ServerConfig | None = None, registry: ConnectionRegistry | None = None) -> None:
        self.config = config or ServerConfig()
        limit = self.config.max_connections
        if registry is None:
            registry = ConnectionRegistry(limit=limit)
        elif limit is not None:
            if registry.limit is None:
                registry.limit = limit
            elif registry.limit != limit:
                raise ValueError(
                    f"registry limit {registry.limit} conflicts with max_connections={limit}"
                )
        self.registry = registry
        self._server: _ThreadingEchoServer | None = None

    @property
    def address(self) -> TcpTarget:
        if self._server is None:
            return TcpTarget(self.config.host, self.config.port)
        host, port = self._server.server_address[:2]
        return TcpTarget(host, port)

    def start(self) -> TcpTarget:
        """Bind and listen. Raises ``BindError`` if the address is unavailable."""
        if self._server is not None:
            raise RuntimeError("server already started")
        try:
            self._server = _ThreadingEchoServer(self.config, self.registry)
        except OSError as e:
            raise BindError(self.config.host, self.config.port, e) from e

        addr = self.address
        log.info("listening on tcp://%s:%d", addr.host, addr.port)
        return addr

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        if self._server is None:
            self.start()
        assert self._server is not None
        self._server.serve_forever(poll_interval)

    def shutdown(self) -> None:
        """Stop a running ``serve_forever`` loop. Must be called from another thread."""
        if self._server is not None:
            self._server.shutdown()

    def close(self) -> None:
        if self._server is None:
            return
        addr = self.address
        self._server.server_close()
        self._server = None
        log.info("stopped listening on tcp://%s:%d, %d connections still open", addr.host, addr.port, len(self.registry))

    def __enter__(self) -> EchoServer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def run_echo_server(config: ServerConfig) -> None:
    with EchoServer(config) as server:
        server.start()
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            log.info("interrupted")
