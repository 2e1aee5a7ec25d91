"""Client mode: trigger-paced outbound sessions.

Instead of listening, the engine connects out to ``bind_address:port``. The
trigger decides when: it is called before every session, and each value that
fires (see ``triggers.fires``) forks a worker that opens a connection and calls
``handler(ctx, value)``. The parent goes straight back to the trigger. Once
the trigger stops firing the parent waits for the last worker and
returns.

Nothing limits how many workers overlap; a trigger that fires quickly gets
as many concurrent sessions as it fires.
"""

import os
import socket
from functools import partial
from typing import Any

from loguru import logger

from netserver.core.context import ProcessShutdown
from netserver.core.triggers import fire_once, fires

from .engine import ProcessEngine


class ClientEngine(ProcessEngine):
    """Outbound dispatch loop."""

    mode_name = "client"

    def run(self) -> int:
        """Launch sessions until the trigger stops.

        Returns:
            int: Number of sessions launched

        Raises:
            StartupError: If called outside the main thread
            ForkError: If a worker cannot be forked
        """
        self.ensure_main_thread()
        trigger = self.config.trigger or fire_once()
        host, port = self.config.remote_host, self.config.port

        launched = 0
        last_pid: int | None = None
        try:
            self.install_signal_handlers(trap_interrupt=False)
            self.root_pid = os.getpid()
            self.shutdown = ProcessShutdown(self.root_pid)
            logger.info(f"Client {self.root_pid} dispatching sessions to {host}:{port}")
            value = trigger()
            while fires(value) and not self.shutdown.is_set():
                last_pid = self.spawn_worker(partial(self._run_session, value))
                launched += 1
                logger.debug(f"{self.root_pid}: forked {last_pid} (trigger value {value!r})")
                value = trigger()
        finally:
            # The last worker is waited on even when the trigger raised
            if last_pid is not None:
                self.wait_for(last_pid)
            self.restore_signal_handlers()
        logger.info(f"Client {self.root_pid} finished: {launched} session(s) launched")
        return launched

    def _run_session(self, value: Any) -> int:
        host, port = self.config.remote_host, self.config.port
        try:
            sock = socket.create_connection((host, port), timeout=self.config.timeout)
        except OSError as e:
            logger.error(f"Socket could not be created to {host}:{port}: {e}")
            return 1
        peer = self.identify(sock)
        self.serve_connection(self.make_context(sock, peer), value)
        return 0
