"""Logging configuration for the server.

This module provides centralized logging configuration using Loguru.
It sets up logging to both file and console with proper formatting
and log rotation.
"""

import sys
from pathlib import Path

from loguru import logger

# Create logs directory in user's home directory
LOG_DIR = Path.home() / ".netserver" / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{process}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {process} | {name}:{function}:{line} - {message}"

_console_sink_id: int | None = None


def _add_console_sink(level: str) -> None:
    global _console_sink_id
    if _console_sink_id is not None:
        logger.remove(_console_sink_id)
    _console_sink_id = logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        backtrace=True,
        diagnose=True,
    )


def enable_debug_logging() -> None:
    """Lower the console sink to DEBUG."""
    _add_console_sink("DEBUG")
    logger.debug("Debug logging enabled")


# Configure loguru
logger.remove()  # Remove default handler

_add_console_sink("INFO")

# Add file handler with rotation
logger.add(
    LOG_DIR / "netserver.log",
    rotation="10 MB",
    retention="1 week",
    compression="zip",
    format=FILE_FORMAT,
    level="DEBUG",
    backtrace=True,
    diagnose=True,
)

__all__ = ["LOG_DIR", "enable_debug_logging", "logger"]
