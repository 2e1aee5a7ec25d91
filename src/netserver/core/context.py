"""Per-connection handle passed to handlers.

A ``ConnectionContext`` wraps one connected socket together with the identity
of the peer and the shutdown signal of the engine serving it. Handlers read
requests and write responses through it:

    def handler(ctx: ConnectionContext) -> None:
        for line in ctx.lines():
            if line.lower().startswith("bye"):
                return
            ctx.write(f"You said:>{line}")

Writes go straight to the socket with ``sendall``. Inside
``redirect_stdio()`` the process-wide ``sys.stdin``/``sys.stdout`` read from
and write to the connection, so plain ``input()``/``print()`` work too.

``quit()`` asks the whole server to stop. How that happens depends on the
shutdown signal the engine installed: forking and client engines send
SIGTERM to the supervisor process, the select engine returns from its loop.
"""

import contextlib
import io
import os
import signal
import socket
import sys
from collections.abc import Iterator
from typing import BinaryIO, NoReturn

from loguru import logger

from netserver.core.access import PeerIdentity
from netserver.core.exceptions import QuitRequested


class ShutdownSignal:
    """Cancellation flag shared between an engine and its handlers."""

    def __init__(self) -> None:
        self._requested = False

    def is_set(self) -> bool:
        return self._requested

    def trigger(self, root_pid: int | None = None) -> None:
        self._requested = True


class LoopShutdown(ShutdownSignal):
    """Shutdown of an in-process event loop: the loop checks the flag."""


class ProcessShutdown(ShutdownSignal):
    """Shutdown of a process tree rooted at the supervisor.

    Args:
        root_pid: PID of the supervisor process
    """

    def __init__(self, root_pid: int) -> None:
        super().__init__()
        self.root_pid = root_pid

    def trigger(self, root_pid: int | None = None) -> None:
        """Send SIGTERM to the supervisor, or to ``root_pid`` when given."""
        super().trigger()
        target = root_pid or self.root_pid
        if os.getpid() == target:
            return
        logger.info(f"Shutdown requested (root pid is {target})")
        try:
            os.kill(target, signal.SIGTERM)
        except ProcessLookupError:
            logger.warning(f"Supervisor {target} is already gone")


class ConnectionContext:
    """One connection as seen by a handler.

    Args:
        sock: Connected socket, owned by the context from here on
        peer: Identity of the remote host
        shutdown: Signal used by ``quit()``
        mode: Name of the engine serving the connection
        encoding: Text encoding of ``readline()``/``write()``
    """

    def __init__(
        self,
        sock: socket.socket,
        peer: PeerIdentity,
        shutdown: ShutdownSignal,
        mode: str = "forking",
        encoding: str = "utf-8",
    ) -> None:
        self.sock = sock
        self.mode = mode
        self.encoding = encoding
        self._peer = peer
        self._shutdown = shutdown
        self._rfile: BinaryIO = sock.makefile("rb")
        self._stdio: list[io.TextIOWrapper] = []
        self.closed = False

    @property
    def peer(self) -> PeerIdentity:
        """Hostname and address of the other end."""
        return self._peer

    @property
    def rfile(self) -> BinaryIO:
        """Buffered binary reader over the connection."""
        return self._rfile

    def read(self, size: int = -1) -> bytes:
        return self._rfile.read(size)

    def readline(self) -> str:
        """Read one line, including its newline; empty string at end of stream."""
        return self._rfile.readline().decode(self.encoding, errors="replace")

    def lines(self) -> Iterator[str]:
        """Iterate over lines until the peer closes the connection."""
        while line := self.readline():
            yield line

    def write(self, data: str | bytes) -> None:
        """Send ``data`` immediately."""
        if isinstance(data, str):
            data = data.encode(self.encoding)
        self.sock.sendall(data)

    def quit(self, root_pid: int | None = None) -> NoReturn:
        """Stop the whole server and end this handler.

        Args:
            root_pid: Process to signal instead of the engine's supervisor;
                ignored by the select engine
        """
        logger.debug(f"quit() called for {self._peer}")
        self._shutdown.trigger(root_pid)
        raise QuitRequested

    @contextlib.contextmanager
    def redirect_stdio(self) -> Iterator[None]:
        """Rebind ``sys.stdin`` and ``sys.stdout`` to the connection.

        stdout is line-buffered and flushed on exit.
        """
        stdin = io.TextIOWrapper(self._rfile, encoding=self.encoding, errors="replace")
        stdout = io.TextIOWrapper(
            self.sock.makefile("wb"),
            encoding=self.encoding,
            line_buffering=True,
            write_through=True,
        )
        self._stdio = [stdin, stdout]
        saved = sys.stdin, sys.stdout
        sys.stdin, sys.stdout = stdin, stdout
        try:
            yield
        finally:
            sys.stdin, sys.stdout = saved
            with contextlib.suppress(OSError, ValueError):
                stdout.flush()

    def close(self) -> None:
        """Shut the connection down in both directions and close it."""
        if self.closed:
            return
        self.closed = True
        for stream in self._stdio:
            with contextlib.suppress(OSError, ValueError):
                stream.flush()
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        # The socket fd is only released once every makefile() stream is closed
        for stream in (*self._stdio, self._rfile):
            with contextlib.suppress(OSError, ValueError):
                stream.close()
        self.sock.close()

    def __enter__(self) -> "ConnectionContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ConnectionContext(peer={self._peer}, mode={self.mode!r})"
