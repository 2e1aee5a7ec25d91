"""Utility functions and helpers."""

from netserver.core.utils.utils import is_root, privileged_port

__all__ = ["is_root", "privileged_port"]
