"""
Tests for the forking engine, run in forked child processes.
"""

import errno
import os
import signal
import socket
import threading
import time

import psutil
import pytest

from conftest import StaticResolver, connect, read_all, read_line, requires_fork
from netserver.core.config import ServerConfig
from netserver.core.exceptions import ForkError, StartupError
from netserver.core.lib import ForkingEngine

pytestmark = requires_fork


def pid_handler(ctx):
    """Reply with the worker pid for every line; 'exit' shuts the server down."""
    for line in ctx.lines():
        if line.startswith("exit"):
            ctx.quit()
        ctx.write(f"{os.getpid()}\n")


def make_config(port: int, **options) -> ServerConfig:
    return ServerConfig(
        port=port,
        bind_address="127.0.0.1",
        handler=pid_handler,
        reverse_lookup=False,
        timeout=10,
        **options,
    )


def test_each_connection_gets_its_own_worker(free_port, run_in_child):
    engine = run_in_child(lambda: ForkingEngine(make_config(free_port)).run())
    supervisor_pid = engine.process.pid

    worker_pids = []
    for _ in range(3):
        with connect(free_port) as client:
            client.sendall(b"ping\n")
            worker_pids.append(int(read_line(client)))

    assert len(set(worker_pids)) == 3
    assert supervisor_pid not in worker_pids


def test_workers_serve_connections_concurrently(free_port, run_in_child):
    run_in_child(lambda: ForkingEngine(make_config(free_port)).run())

    with connect(free_port) as first, connect(free_port) as second:
        # The first session is still open while the second one is served
        first.sendall(b"ping\n")
        second.sendall(b"ping\n")
        assert read_line(second).strip().isdigit()
        assert read_line(first).strip().isdigit()


def test_handler_output_through_print(free_port, run_in_child):
    def print_handler(ctx):
        name = input()
        print(f"hello {name}")

    config = make_config(free_port)
    config.handler = print_handler
    run_in_child(lambda: ForkingEngine(config).run())

    with connect(free_port) as client:
        client.sendall(b"world\n")
        assert read_all(client) == b"hello world\n"


def test_denied_connection_never_reaches_handler(free_port, run_in_child, fork_context):
    calls = fork_context.Value("i", 0)

    def counting_handler(ctx):
        with calls.get_lock():
            calls.value += 1
        ctx.write("welcome\n")

    config = make_config(free_port, forbidden=[r"127\.0\.0\.1"])
    config.handler = counting_handler
    run_in_child(lambda: ForkingEngine(config).run())

    with connect(free_port) as client:
        assert read_all(client) == b""
    assert calls.value == 0


@pytest.mark.parametrize(
    "hostname, address, expected",
    [
        ("a.example.org", "10.0.0.5", b""),
        ("b.example.org", "192.168.1.1", b"welcome\n"),
    ],
)
def test_access_scenario(free_port, run_in_child, hostname, address, expected):
    config = make_config(free_port, allowed=[r".*\.example\.org"], forbidden=[r"10\.0\.0\.5"])
    config.handler = lambda ctx: ctx.write("welcome\n")
    resolver = StaticResolver(hostname, address)
    run_in_child(lambda: ForkingEngine(config, resolver=resolver).run())

    with connect(free_port) as client:
        assert read_all(client) == expected


def test_quit_terminates_supervisor_and_workers(free_port, run_in_child):
    engine = run_in_child(lambda: ForkingEngine(make_config(free_port)).run())

    idle = connect(free_port)
    try:
        idle.sendall(b"ping\n")
        idle_worker = int(read_line(idle))

        with connect(free_port) as quitter:
            quitter.sendall(b"exit\n")

        assert engine.join(timeout=15) == -signal.SIGTERM
        # The idle worker was taken down with the supervisor
        assert read_all(idle) == b""
        assert idle_worker != engine.process.pid
    finally:
        idle.close()


def test_interrupt_exits_cleanly(free_port, run_in_child):
    engine = run_in_child(lambda: ForkingEngine(make_config(free_port)).run())

    with connect(free_port) as client:
        client.sendall(b"ping\n")
        read_line(client)

    os.kill(engine.process.pid, signal.SIGINT)
    assert engine.join() == 0


def test_handler_error_does_not_stop_server(free_port, run_in_child):
    def fragile_handler(ctx):
        if ctx.readline().startswith("boom"):
            raise RuntimeError("handler failure")
        ctx.write("fine\n")

    config = make_config(free_port)
    config.handler = fragile_handler
    run_in_child(lambda: ForkingEngine(config).run())

    with connect(free_port) as client:
        client.sendall(b"boom\n")
        assert read_all(client) == b""

    with connect(free_port) as client:
        client.sendall(b"hello\n")
        assert read_all(client) == b"fine\n"


def test_bind_failure_is_a_startup_error(free_port):
    with socket.socket() as occupied:
        occupied.bind(("127.0.0.1", free_port))
        occupied.listen(1)

        with pytest.raises(StartupError):
            ForkingEngine(make_config(free_port)).run()


def test_outside_main_thread_fails_before_binding(free_port):
    errors = []

    def run():
        try:
            ForkingEngine(make_config(free_port)).run()
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=run)
    thread.start()
    thread.join(timeout=5)

    assert len(errors) == 1
    assert isinstance(errors[0], StartupError)
    # Nothing was left listening on the port
    with socket.socket() as client:
        assert client.connect_ex(("127.0.0.1", free_port)) != 0


def test_fork_failure_is_fatal(free_port, run_in_child, fork_context):
    failed = fork_context.Value("i", 0)

    def run():
        def fork():
            raise OSError(errno.EAGAIN, "Resource temporarily unavailable")

        os.fork = fork
        try:
            ForkingEngine(make_config(free_port)).run()
        except ForkError:
            failed.value = 1

    engine = run_in_child(run)

    with connect(free_port) as client:
        # The connection is closed along with the server
        assert read_all(client) == b""

    assert engine.join() == 0
    assert failed.value == 1


def test_finished_workers_are_reaped(free_port, run_in_child):
    engine = run_in_child(lambda: ForkingEngine(make_config(free_port)).run())
    supervisor = psutil.Process(engine.process.pid)

    for _ in range(5):
        with connect(free_port) as client:
            client.sendall(b"ping\n")
            read_line(client)

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        children = supervisor.children()
        if not children:
            break
        time.sleep(0.1)

    assert not [c for c in supervisor.children() if c.status() == psutil.STATUS_ZOMBIE]
    assert supervisor.children() == []


def test_other_children_are_not_reaped(free_port, run_in_child, fork_context):
    exit_code = fork_context.Value("i", -1)

    def run():
        # A child of the embedding program, not a worker
        bystander = os.fork()
        if bystander == 0:
            time.sleep(1)
            os._exit(7)
        try:
            ForkingEngine(make_config(free_port)).run()
        finally:
            _, status = os.waitpid(bystander, 0)
            exit_code.value = os.waitstatus_to_exitcode(status)

    engine = run_in_child(run)

    with connect(free_port) as client:
        client.sendall(b"ping\n")
        read_line(client)
    # Let the bystander exit while the server is running
    time.sleep(1.5)

    os.kill(engine.process.pid, signal.SIGINT)
    assert engine.join() == 0
    assert exit_code.value == 7
