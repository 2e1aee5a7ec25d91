"""Listening socket shared by the forking and select engines."""

import socket
import socketserver

from loguru import logger

from netserver.core.config import ServerConfig
from netserver.core.exceptions import StartupError


class Listener(socketserver.TCPServer):
    """Bound, listening TCP socket built from a ``ServerConfig``.

    Only the bind/listen/accept half of ``TCPServer`` is used; the engines
    run their own loops.
    """

    allow_reuse_address = True

    def __init__(self, config: ServerConfig) -> None:
        self.request_queue_size = config.backlog
        address = (config.bind_address or "", config.port or 0)
        try:
            super().__init__(address, socketserver.BaseRequestHandler)
        except OSError as e:
            raise StartupError(f"Socket could not be created on {address[0] or '*'}:{address[1]}: {e}") from e
        logger.debug(f"Listening on {self.describe()} (backlog {config.backlog})")

    def server_bind(self) -> None:
        """Bind the server socket with reuse options."""
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        super().server_bind()

    def describe(self) -> str:
        host, port = self.server_address[:2]
        return f"{host or '*'}:{port}"
