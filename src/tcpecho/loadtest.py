from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass, field

from tcpecho.common import TcpTarget

log = logging.getLogger(__name__)


def payload_for(index: int) -> bytes:
    return f"I am the {index} one".encode("utf-8")


def run_echo_client(target: TcpTarget, message: bytes, timeout: float = 5.0) -> bytes:
    """Send ``message`` on a fresh connection and return everything echoed back.

    Reads until as many bytes as were sent have arrived, ends the write side,
    then keeps reading until the server closes the connection.
    """
    with socket.create_connection((target.host, target.port), timeout=timeout) as s:
        s.sendall(message)
        chunks: list[bytes] = []
        received = 0
        while received < len(message):
            data = s.recv(4096)
            if not data:
                return b"".join(chunks)
            chunks.append(data)
            received += len(data)

        s.shutdown(socket.SHUT_WR)
        while True:
            data = s.recv(4096)
            if not data:
                break
            chunks.append(data)

    return b"".join(chunks)


@dataclass
class LoadTestResult:
    connections: int
    elapsed: float
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return self.connections - len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


def run_load_test(target: TcpTarget, connections: int = 10000, timeout: float = 30.0) -> LoadTestResult:
    """Open ``connections`` concurrent clients, each echoing its own payload.

    Every client runs on its own thread; all are started before any is joined.
    A mismatch or socket error is recorded against the client's index.
    """
    failures: dict[int, str] = {}
    lock = threading.Lock()

    def worker(index: int) -> None:
        message = payload_for(index)
        try:
            reply = run_echo_client(target, message, timeout)
        except OSError as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            if reply == message:
                return
            reason = f"expected {message!r}, got {reply!r}"
        with lock:
            failures[index] = reason

    log.info("opening %d connections to tcp://%s:%d", connections, target.host, target.port)
    start = time.monotonic()
    threads = [threading.Thread(target=worker, args=(i,), daemon=True) for i in range(connections)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    elapsed = time.monotonic() - start

    result = LoadTestResult(connections=connections, elapsed=elapsed, failures=failures)
    log.info(
        "%d/%d connections echoed correctly in %.0f ms",
        result.succeeded,
        connections,
        elapsed * 1000,
    )
    return result
