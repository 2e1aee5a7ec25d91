"""Settings display for the command line.

Presents the effective server configuration in a table using Rich before
the server starts.
"""

from rich.console import Console
from rich.table import Table

from netserver.core.config import ServerConfig

console = Console()


def _callable_name(func: object) -> str:
    if func is None:
        return "default"
    module = getattr(func, "__module__", None)
    name = getattr(func, "__qualname__", None) or repr(func)
    return f"{module}:{name}" if module else name


def settings_table(config: ServerConfig) -> Table:
    """Build a table of the settings that matter for ``config.mode``."""
    client = config.mode == "client"
    table = Table(title=f"netserver ({config.mode} mode)")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    if client:
        table.add_row("Remote host", config.remote_host)
        table.add_row("Remote port", str(config.port))
        table.add_row("Trigger", _callable_name(config.trigger))
    else:
        table.add_row("Address", config.bind_address or "*")
        table.add_row("Port", str(config.port))
        table.add_row("Backlog", str(config.backlog))
        table.add_row("Allowed", ", ".join(config.allowed) or "anyone")
        table.add_row("Forbidden", ", ".join(config.forbidden) or "nobody")
        table.add_row("Reverse lookup", "on" if config.reverse_lookup else "off")
    table.add_row("Timeout", f"{config.timeout:g}s")
    table.add_row("Handler", _callable_name(config.handler))
    return table


def show_settings(config: ServerConfig) -> None:
    """Print the settings table."""
    console.print(settings_table(config))
