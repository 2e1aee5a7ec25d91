"""Forking server: one worker process per accepted connection.

The supervisor accepts connections and forks a worker for each. The worker
resolves the peer, applies the access policy, and either closes the
connection straight away or runs the handler with ``sys.stdin``/``sys.stdout``
bound to the socket. The supervisor never waits on a worker; finished workers
are reaped from a SIGCHLD handler.

Shutdown:
- SIGINT (when the embedding program has not trapped it) exits with status 0
- ``ctx.quit()`` in any worker sends SIGTERM to the supervisor, which
  terminates the remaining workers and then dies of the signal

Example:
    config = ServerConfig(port=9000, handler=my_handler)
    ForkingEngine(config).run()
"""

import contextlib
import os
import selectors
import socket

from loguru import logger

from netserver.core.context import ProcessShutdown

from .engine import POLL_INTERVAL, ProcessEngine
from .listener import Listener


class ForkingEngine(ProcessEngine):
    """Accept loop forking a worker for every connection."""

    mode_name = "forking"

    def run(self) -> None:
        """Serve until a signal ends the process or the shutdown flag is set.

        Raises:
            StartupError: If called outside the main thread or the listening
                socket cannot be created
            ForkError: If a worker cannot be forked
        """
        self.ensure_main_thread()
        listener = Listener(self.config)
        self.server_address = listener.server_address

        try:
            self.install_signal_handlers()
            self.root_pid = os.getpid()
            self.shutdown = ProcessShutdown(self.root_pid)
            logger.info(f"Forking server {self.root_pid} listening on {listener.describe()}")
            with selectors.DefaultSelector() as selector:
                selector.register(listener.socket, selectors.EVENT_READ)
                while not self.shutdown.is_set():
                    if not selector.select(POLL_INTERVAL):
                        continue
                    self._accept(listener)
        finally:
            listener.server_close()
            self.restore_signal_handlers()
            if self.interrupted:
                logger.info(f"SIGINT: server {self.root_pid} shutting down")
            logger.info(f"Server {self.root_pid} stopped: {self.stats.summary()}")

    def _accept(self, listener: Listener) -> None:
        try:
            conn, address = listener.get_request()
        except OSError as e:
            logger.warning(f"accept() failed: {e}")
            return
        self.stats.connection_accepted()
        try:
            pid = self.spawn_worker(lambda: self._serve_in_worker(listener, conn))
        finally:
            # The worker owns the connection now
            conn.close()
        logger.debug(f"{self.root_pid}: forked {pid} for {address[0]}:{address[1]}")

    def _serve_in_worker(self, listener: Listener, conn: socket.socket) -> int:
        listener.server_close()
        peer = self.identify(conn)
        if not self.check_access(peer):
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RDWR)
            conn.close()
            return 0
        self.serve_connection(self.make_context(conn, peer))
        return 0
