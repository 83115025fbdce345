"""Command-line interface for mcp-relay.

Provides commands for checking configuration and starting the server.
"""

from .main import cli, main

__all__ = ["cli", "main"]
