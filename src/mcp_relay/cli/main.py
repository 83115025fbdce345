"""Main CLI entry point for mcp-relay.

Commands:
    config  - Configuration checks (check)
    start   - Start the MCP server on stdio

Subcommand help:
    mcp-relay COMMAND -h       Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli"]

import sys

import click

from mcp_relay import __version__

from .commands.config import config
from .commands.start import start


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """mcp-relay: request lifecycle and log shipping for MCP servers."""
    if version:
        click.echo(f"mcp-relay {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(config)
cli.add_command(start)


def main() -> None:
    """CLI entry point."""
    cli()
