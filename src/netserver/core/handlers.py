"""Built-in connection handlers.

The default handler echoes every line back to the client. A line starting
with ``bye`` ends the session, a line starting with ``exit`` shuts the whole
server down.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from netserver.core.context import ConnectionContext

ECHO_BANNER = "Echo server: type bye to quit, exit to kill the server.\n\n"


def echo_handler(ctx: "ConnectionContext", *_: Any) -> None:
    """Echo lines until the client says bye or exit."""
    ctx.write(ECHO_BANNER)
    for line in ctx.lines():
        command = line.strip().lower()
        if command.startswith("bye"):
            return
        if command.startswith("exit"):
            ctx.quit()
        ctx.write(f"You said:>{line}\n")
