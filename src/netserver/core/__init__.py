"""Core dispatch engine.

This package contains the server components:
- Configuration and option validation
- Allow/forbid access control
- Per-connection contexts handed to handlers
- Reverse DNS resolution of peers
- The forking, select and client engines
- Mode selection

The command-line interface in ``netserver.cmd`` is a thin layer over
``netserver.core.server``.
"""
