"""Start command for mcp-relay CLI.

Serves the relay on stdio. Normally launched by the MCP client.
"""

from __future__ import annotations

__all__ = ["start"]

import sys

import click

from mcp_relay import __version__
from mcp_relay.config import load_config_from_env
from mcp_relay.exceptions import ConfigurationError
from mcp_relay.lifecycle.middleware import SessionNotificationSink
from mcp_relay.runtime import RelayRuntime
from mcp_relay.server import create_server

from ..styling import style_error


@click.command()
def start() -> None:
    """Start the MCP server on stdio.

    Configuration is read from the environment (see `mcp-relay config check`).
    All output other than the MCP stream goes to stderr.
    """
    try:
        loaded = load_config_from_env()
        runtime = RelayRuntime.from_config(loaded, SessionNotificationSink())
    except ConfigurationError as e:
        click.echo(style_error(f"Configuration error: {e}"), err=True)
        click.echo("Run 'mcp-relay config check' for details.", err=True)
        sys.exit(1)

    click.echo(f"mcp-relay {__version__} running on stdio", err=True)

    server = create_server(runtime)
    try:
        server.run(transport="stdio")
    except KeyboardInterrupt:
        click.echo("\nStopped.", err=True)
