"""Dispatch engines."""

from .client import ClientEngine
from .engine import Engine, ProcessEngine
from .forking import ForkingEngine
from .listener import Listener
from .multiplex import MultiplexEngine
from .stats import ServerStats

__all__ = [
    "ClientEngine",
    "Engine",
    "ForkingEngine",
    "Listener",
    "MultiplexEngine",
    "ProcessEngine",
    "ServerStats",
]
