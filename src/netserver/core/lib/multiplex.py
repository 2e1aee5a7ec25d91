"""Single-threaded select-based server.

One selector watches the listening socket and every open connection.
New connections are checked against the access policy as soon as they are
accepted. A connection is dispatched once it becomes readable: if the peer
already closed it, it is dropped; otherwise the handler runs to completion
and the connection is closed.

Handlers run inline and block the whole loop, so this mode suits short
request/response exchanges, not slow or interactive sessions. A connection
only becomes readable after the peer sends something, so a handler cannot
greet a client that has not spoken first.

``ctx.quit()`` ends the loop and ``run()`` returns.
"""

import contextlib
import selectors
import socket

from loguru import logger

from netserver.core.access import PeerIdentity
from netserver.core.context import LoopShutdown

from .engine import POLL_INTERVAL, Engine
from .listener import Listener


class MultiplexEngine(Engine):
    """Readiness loop serving connections one at a time."""

    mode_name = "select"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._peers: dict[socket.socket, PeerIdentity] = {}

    def run(self) -> None:
        """Serve until a handler calls ``quit()`` or the shutdown flag is set.

        Raises:
            StartupError: If the listening socket cannot be created
        """
        self.shutdown = LoopShutdown()
        listener = Listener(self.config)
        listener.socket.setblocking(False)
        self.server_address = listener.server_address
        logger.info(f"Select server listening on {listener.describe()}")

        with selectors.DefaultSelector() as selector:
            selector.register(listener.socket, selectors.EVENT_READ)
            try:
                while not self.shutdown.is_set():
                    for key, _ in selector.select(POLL_INTERVAL):
                        if key.fileobj is listener.socket:
                            self._accept(listener, selector)
                        else:
                            self._dispatch(key.fileobj, selector)
                        if self.shutdown.is_set():
                            break
            finally:
                for sock in list(self._peers):
                    self._drop(sock, selector)
                listener.server_close()
                logger.info(f"Select server stopped: {self.stats.summary()}")

    def _accept(self, listener: Listener, selector: selectors.BaseSelector) -> None:
        try:
            conn, _ = listener.get_request()
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            logger.warning(f"accept() failed: {e}")
            return
        self.stats.connection_accepted()
        conn.setblocking(True)
        try:
            peer = self.identify(conn)
        except OSError as e:
            logger.warning(f"Dropping connection with unknown peer: {e}")
            conn.close()
            return
        if not self.check_access(peer):
            conn.close()
            return
        self._peers[conn] = peer
        selector.register(conn, selectors.EVENT_READ)

    def _dispatch(self, conn: socket.socket, selector: selectors.BaseSelector) -> None:
        peer = self._peers[conn]
        try:
            pending = conn.recv(1, socket.MSG_PEEK)
        except OSError as e:
            logger.debug(f"Connection from {peer} failed: {e}")
            pending = b""
        if not pending:
            logger.debug(f"{peer} closed the connection without data")
            self._drop(conn, selector)
            return

        selector.unregister(conn)
        del self._peers[conn]
        self.serve_connection(self.make_context(conn, peer))

    def _drop(self, conn: socket.socket, selector: selectors.BaseSelector) -> None:
        with contextlib.suppress(KeyError, ValueError):
            selector.unregister(conn)
        self._peers.pop(conn, None)
        conn.close()
