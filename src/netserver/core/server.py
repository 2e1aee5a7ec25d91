"""Mode selection and main entry point of the server.

``NetServer`` reads the configured mode once and hands control to the
matching engine for the rest of the call:

- ``forking`` (default): ``ForkingEngine``, one process per connection
- ``select`` / ``multiplex``: ``MultiplexEngine``, single-threaded loop
- ``client``: ``ClientEngine``, trigger-paced outbound sessions

``threaded`` and ``inetd`` are recognized but not implemented; they fail,
like any unknown mode, before a socket is created.

Example:
    from netserver import NetServer, ServerConfig

    server = NetServer(ServerConfig(port=9000, handler=my_handler))
    server.run()
"""

from types import MappingProxyType
from typing import Any, Final

from loguru import logger

from netserver.core.config import ServerConfig
from netserver.core.exceptions import StartupError
from netserver.core.lib import ClientEngine, Engine, ForkingEngine, MultiplexEngine
from netserver.core.utils.log_config import enable_debug_logging

ENGINES: Final = MappingProxyType(
    {
        "forking": ForkingEngine,
        "select": MultiplexEngine,
        "multiplex": MultiplexEngine,
        "client": ClientEngine,
    }
)
UNIMPLEMENTED_MODES: Final = frozenset({"threaded", "inetd"})


def select_engine(mode: str | None) -> type[Engine]:
    """Return the engine class for ``mode``.

    Raises:
        StartupError: If the mode is unknown or not implemented
    """
    name = (mode or "forking").lower()
    if name in ENGINES:
        return ENGINES[name]
    if name in UNIMPLEMENTED_MODES:
        raise StartupError(f"Mode {mode!r} is not implemented")
    raise StartupError(f"Unknown mode: {mode}")


class NetServer:
    """A configured server, ready to run in one of the dispatch modes.

    Args:
        config: Server configuration; built from ``options`` when omitted
        **options: Options for ``ServerConfig.from_options``
    """

    def __init__(self, config: ServerConfig | None = None, **options: Any) -> None:
        self.config = config if config is not None else ServerConfig.from_options(**options)
        self.engine: Engine | None = None

    def run(self) -> Any:
        """Run the configured engine.

        Returns:
            Whatever the engine returns: the number of sessions in client mode,
            None for the server modes once their loop ends

        Raises:
            StartupError: Unknown mode, missing port, or bind failure
            ForkError: A worker process could not be forked
        """
        engine_class = select_engine(self.config.mode)
        if self.config.port is None or (engine_class is ClientEngine and not self.config.port):
            raise StartupError("No port configured")
        if self.config.debug:
            enable_debug_logging()

        logger.debug(f"run() in {engine_class.mode_name} mode")
        self.engine = engine_class(self.config)
        try:
            return self.engine.run()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
            return None

    def quit(self) -> None:
        """Ask a running engine to stop."""
        if self.engine is not None:
            self.engine.shutdown.trigger()


def run(config: ServerConfig) -> Any:
    """Run a server for ``config``; see ``NetServer.run``."""
    return NetServer(config).run()
