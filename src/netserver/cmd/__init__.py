"""Command line interface modules.

This package provides the command-line tools for:
- Starting a forking or select-based server
- Running client-mode sessions against a remote host
- Displaying the effective settings
- Error reporting and logging

The commands are thin wrappers around ``netserver.core.server``.
"""
