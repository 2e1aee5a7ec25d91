"""Common utility functions."""

import os
from typing import Final

# Ports below this need root privileges on Unix-like systems
FIRST_UNPRIVILEGED_PORT: Final = 1024


def is_root() -> bool:
    """Check if the process is running with root privileges."""
    if os.name == "nt":  # Windows
        try:
            import ctypes

            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def privileged_port(port: int | None) -> bool:
    """True if binding ``port`` needs root privileges."""
    return port is not None and 0 < port < FIRST_UNPRIVILEGED_PORT
