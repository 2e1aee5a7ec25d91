"""
pytest configuration and fixtures.
"""

import multiprocessing
import os
import socket
import time
from collections.abc import Callable, Generator

import pytest

from netserver.core.access import PeerIdentity
from netserver.core.resolver import PeerResolver

requires_fork = pytest.mark.skipif(not hasattr(os, "fork"), reason="needs os.fork")

CONNECT_RETRIES = 50  # 5 seconds max


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def fork_context():
    """multiprocessing context whose children inherit closures without pickling."""
    if not hasattr(os, "fork"):
        pytest.skip("needs os.fork")
    return multiprocessing.get_context("fork")


@pytest.fixture(autouse=True)
def clear_resolver_cache() -> Generator[None, None, None]:
    PeerResolver._hostname_cache.clear()
    yield
    PeerResolver._hostname_cache.clear()


class EngineProcess:
    """Runs a callable in a forked child and cleans it up afterwards."""

    def __init__(self, context, target: Callable[[], object]):
        self.process = context.Process(target=target, daemon=True)

    def start(self) -> "EngineProcess":
        self.process.start()
        return self

    def join(self, timeout: float = 10.0) -> int | None:
        self.process.join(timeout)
        return self.process.exitcode

    def stop(self) -> None:
        if self.process.is_alive():
            self.process.terminate()
            self.process.join(5.0)
        if self.process.is_alive():
            self.process.kill()
            self.process.join(5.0)


@pytest.fixture
def run_in_child(fork_context) -> Generator[Callable[[Callable[[], object]], EngineProcess], None, None]:
    """Start a callable in a forked child process; the child is stopped at teardown."""
    started: list[EngineProcess] = []

    def _start(target: Callable[[], object]) -> EngineProcess:
        engine = EngineProcess(fork_context, target).start()
        started.append(engine)
        return engine

    yield _start

    for engine in started:
        engine.stop()


def connect(port: int, timeout: float = 5.0) -> socket.socket:
    """Connect to a local server, retrying while it starts up."""
    for _ in range(CONNECT_RETRIES):
        try:
            return socket.create_connection(("127.0.0.1", port), timeout=timeout)
        except ConnectionRefusedError:
            time.sleep(0.1)
    raise RuntimeError(f"Server on port {port} failed to start")


def read_all(sock: socket.socket) -> bytes:
    """Read until the server closes the connection."""
    chunks = []
    while True:
        try:
            data = sock.recv(4096)
        except ConnectionResetError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def read_line(sock: socket.socket) -> bytes:
    """Read a single newline-terminated line."""
    data = b""
    while not data.endswith(b"\n"):
        chunk = sock.recv(1)
        if not chunk:
            break
        data += chunk
    return data


class StaticResolver(PeerResolver):
    """Resolver reporting a fixed identity for every connection."""

    def __init__(self, hostname: str, address: str) -> None:
        super().__init__()
        self.peer = PeerIdentity(hostname=hostname, address=address)

    def identify_socket(self, sock, lookup: bool = True) -> PeerIdentity:
        return self.peer
