"""
Unit tests for the built-in echo handler and the client-mode triggers.
"""

import socket

import pytest

from netserver.core import triggers
from netserver.core.access import PeerIdentity
from netserver.core.context import ConnectionContext, LoopShutdown
from netserver.core.exceptions import QuitRequested
from netserver.core.handlers import ECHO_BANNER, echo_handler


@pytest.fixture
def session():
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5.0)
    shutdown = LoopShutdown()
    ctx = ConnectionContext(server_side, PeerIdentity("localhost", "127.0.0.1"), shutdown)
    yield ctx, client_side, shutdown
    ctx.close()
    client_side.close()


def received(client: socket.socket) -> bytes:
    chunks = []
    while data := client.recv(4096):
        chunks.append(data)
    return b"".join(chunks)


class TestEchoHandler:
    def test_echo_until_bye(self, session):
        ctx, client, shutdown = session
        client.sendall(b"hello\nBye now\nnot echoed\n")

        echo_handler(ctx)
        ctx.close()

        output = received(client).decode()
        assert output == ECHO_BANNER + "You said:>hello\n\n"
        assert not shutdown.is_set()

    def test_exit_quits_server(self, session):
        ctx, client, shutdown = session
        client.sendall(b"EXIT\n")

        with pytest.raises(QuitRequested):
            echo_handler(ctx)
        assert shutdown.is_set()

    def test_end_of_stream_returns(self, session):
        ctx, client, _ = session
        client.sendall(b"one\n")
        client.shutdown(socket.SHUT_WR)

        echo_handler(ctx)
        ctx.close()

        assert received(client).decode().endswith("You said:>one\n\n")

    def test_accepts_trigger_value(self, session):
        ctx, client, _ = session
        client.sendall(b"bye\n")

        echo_handler(ctx, "trigger-value")


class TestTriggers:
    def test_fire_once(self):
        trigger = triggers.fire_once()
        assert [trigger(), trigger(), trigger()] == [1, 0, 0]

    def test_fire_once_is_fresh_per_call(self):
        first = triggers.fire_once()
        first()
        assert triggers.fire_once()() == 1

    def test_fire_times(self):
        trigger = triggers.fire_times(3, value="go")
        assert [trigger() for _ in range(5)] == ["go", "go", "go", None, None]

    def test_fire_times_sleeps_between_firings(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(triggers.time, "sleep", sleeps.append)
        trigger = triggers.fire_times(3, interval=0.25)

        for _ in range(4):
            trigger()

        assert sleeps == [0.25, 0.25]

    def test_random_interval(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(triggers.time, "sleep", sleeps.append)
        trigger = triggers.random_interval(2, 0.1, 0.2)

        assert [trigger(), trigger(), trigger()] == [1, 2, 0]
        assert len(sleeps) == 2
        assert all(0.1 <= s <= 0.2 for s in sleeps)

    @pytest.mark.parametrize("value", [None, "", 0, "0", False, []])
    def test_stop_values(self, value):
        assert not triggers.fires(value)

    @pytest.mark.parametrize("value", [1, "1", "go", "00", 2.5])
    def test_firing_values(self, value):
        assert triggers.fires(value)
