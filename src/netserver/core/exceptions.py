"""Custom exceptions for the connection dispatcher.

This module defines the exceptions raised throughout the server:
- Startup failures (bind errors, unsupported modes, missing port)
- Worker spawn failures
- Rejected configuration values
- Reverse DNS failures
- Malformed access-control patterns

Startup and fork errors are fatal and propagate out of ``run()``. The rest are
caught close to where they happen and only affect the connection or the
assignment that caused them.

Example:
    try:
        NetServer(config).run()
    except StartupError as e:
        console.print(f"[red]Server failed to start: {e}")
"""


class NetServerError(Exception):
    """Base exception for server errors."""


class StartupError(NetServerError):
    """Raised when the server cannot start (bind failure, unknown mode)."""


class ForkError(NetServerError):
    """Raised when a worker process cannot be spawned."""


class ConfigValidationError(NetServerError):
    """Raised when a configuration option is unknown or has the wrong type."""

    def __init__(self, option: str, message: str) -> None:
        super().__init__(f"{option}: {message}")
        self.option = option


class PeerResolutionError(NetServerError):
    """Raised when a peer address cannot be resolved to a hostname."""


class InvalidPatternError(NetServerError):
    """Raised when an allowed/forbidden pattern is not a valid regular expression."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"invalid access pattern {pattern!r}: {reason}")
        self.pattern = pattern


class QuitRequested(BaseException):
    """Unwinds a handler after it asked the server to shut down.

    Derives from BaseException so a handler's ``except Exception`` does not
    swallow it.
    """
