import threading
import time

import pytest

from tcpecho.server import EchoServer, ServerConfig


def _wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def start_server():
    started = []

    def _start(**overrides):
        config = ServerConfig(host="127.0.0.1", port=0, **overrides)
        server = EchoServer(config)
        server.start()
        t = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
        t.start()
        started.append((server, t))
        return server

    yield _start

    for server, t in started:
        server.shutdown()
        t.join(timeout=5)
        server.close()


@pytest.fixture
def echo_server(start_server):
    return start_server()
