"""Command-line interface for the server.

This module provides the command-line interface, handling:
- Command-line argument parsing
- Loading TOML configuration files
- Importing user handlers and triggers
- Privileged port checking
- Error reporting

The CLI is built using Typer and provides two commands:
- ``serve`` runs a forking or select-based server
- ``connect`` runs client-mode sessions against a remote host

Example:
    # Echo server on port 9000, only for the local network
    $ netserver serve --port 9000 --allow '192\\.168\\..*'

    # Three client sessions, one second apart
    $ netserver connect --host localhost --port 9000 --count 3 --interval 1 \\
        --handler myapp.handlers:greet
"""

import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from netserver import __version__
from netserver.cmd.display import show_settings
from netserver.core.config import ServerConfig, import_object
from netserver.core.exceptions import ConfigValidationError, NetServerError
from netserver.core.server import NetServer
from netserver.core.triggers import fire_times
from netserver.core.utils import is_root, privileged_port
from netserver.core.utils.log_config import LOG_DIR

console = Console()
app = typer.Typer(help="Generic TCP server: forking, select-based and client modes")


@app.callback(invoke_without_command=True)
def version_callback():
    """Show version information."""
    console.print(f"[cyan]netserver v{__version__}[/cyan]")


def _load_config(config_file: Path | None) -> ServerConfig:
    if config_file is None:
        return ServerConfig()
    try:
        return ServerConfig.from_toml(config_file)
    except (OSError, ConfigValidationError) as e:
        console.print(f"[red]Cannot load {config_file}: {e}")
        raise typer.Exit(1) from e


def _apply(config: ServerConfig, **options) -> None:
    rejected = config.update(**{name: value for name, value in options.items() if value is not None})
    if rejected:
        console.print(f"[red]Invalid value for: {', '.join(rejected)}")
        raise typer.Exit(1)


def _import_option(path: str | None, what: str):
    if path is None:
        return None
    try:
        return import_object(path)
    except ConfigValidationError as e:
        console.print(f"[red]Cannot load {what}: {e}")
        raise typer.Exit(1) from e


def _run(config: ServerConfig) -> None:
    show_settings(config)
    try:
        result = NetServer(config).run()
    except NetServerError as e:
        logger.error(str(e))
        console.print(f"[red]Error: {e}")
        raise typer.Exit(1) from e
    if isinstance(result, int):
        console.print(f"[green]{result} session(s) completed")


@app.command(name="serve")
def serve(
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    host: str | None = typer.Option(None, "--host", help="Local address to bind (default: any)"),
    listen: int | None = typer.Option(None, "--listen", help="Listen queue size"),
    timeout: float | None = typer.Option(None, "--timeout", help="Connection timeout in seconds"),
    mode: str | None = typer.Option(None, "--mode", "-m", help="forking, select or multiplex"),
    allow: list[str] | None = typer.Option(None, "--allow", help="Pattern of hosts allowed to connect"),
    forbid: list[str] | None = typer.Option(None, "--forbid", help="Pattern of hosts refused a connection"),
    handler: str | None = typer.Option(None, "--handler", help="Handler as module:function (default: echo)"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML file with a [server] table"),
    lookup: bool = typer.Option(True, "--lookup/--no-lookup", help="Reverse-resolve peer hostnames"),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
):
    """Start a server."""
    config = _load_config(config_file)
    _apply(
        config,
        port=port,
        hostname=host,
        listen=listen,
        timeout=timeout,
        mode=mode,
        allowed=allow or None,
        forbidden=forbid or None,
        callback=_import_option(handler, "handler"),
        reverse_lookup=None if lookup else False,
        debug=debug or None,
    )
    if config.mode == "client":
        console.print("[red]Use 'netserver connect' for client mode")
        raise typer.Exit(1)

    logger.info(f"Starting server, logging to {LOG_DIR}")
    if privileged_port(config.port) and not is_root():
        logger.warning(f"Port {config.port} normally requires root privileges")
        console.print(f"[yellow]Port {config.port} normally requires root privileges.")
    _run(config)


@app.command(name="connect")
def connect(
    port: int | None = typer.Option(None, "--port", "-p", help="Remote port"),
    host: str | None = typer.Option(None, "--host", help="Remote host (default: localhost)"),
    count: int = typer.Option(1, "--count", "-n", help="Number of sessions to run"),
    interval: float = typer.Option(0.0, "--interval", help="Seconds between sessions"),
    timeout: float | None = typer.Option(None, "--timeout", help="Connection timeout in seconds"),
    handler: str | None = typer.Option(None, "--handler", help="Handler as module:function (default: echo)"),
    trigger: str | None = typer.Option(
        None, "--trigger", help="Trigger as module:function, overrides --count/--interval"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML file with a [server] table"),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
):
    """Run client-mode sessions against a remote server."""
    config = _load_config(config_file)
    _apply(
        config,
        mode="client",
        port=port,
        hostname=host,
        timeout=timeout,
        callback=_import_option(handler, "handler"),
        debug=debug or None,
    )
    custom_trigger = _import_option(trigger, "trigger")
    if custom_trigger is not None:
        _apply(config, trigger=custom_trigger)
    elif config.trigger is None or count != 1 or interval:
        _apply(config, trigger=fire_times(count, interval=interval))
    _run(config)


def main() -> None:
    """Console script entry point."""
    try:
        app()
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
