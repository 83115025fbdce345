"""Config command group for mcp-relay CLI.

Configuration comes from environment variables only; this group checks it.
"""

from __future__ import annotations

__all__ = ["config"]

import json
import sys

import click

from mcp_relay.config import RelayConfig, load_config_from_env
from mcp_relay.exceptions import ConfigurationError

from ..styling import style_error, style_header, style_success


def _print_summary(loaded: RelayConfig) -> None:
    shipping = loaded.log_shipping

    click.echo(style_header("Server"))
    click.echo(f"  server_name: {loaded.server_name}")
    click.echo(f"  user: {loaded.user}")
    click.echo(f"  integration: {loaded.integration}")
    click.echo()

    click.echo(style_header("Log shipping"))
    click.echo(f"  enabled: {shipping.enabled}")
    if shipping.enabled:
        click.echo(f"  endpoint: {shipping.endpoint}")
        click.echo(f"  api_key: {'(set)' if shipping.api_key else '(not set)'}")
        click.echo(f"  batch_size: {shipping.batch_size}")
        click.echo(f"  flush_interval: {shipping.flush_interval}s")
        click.echo(f"  max_retries: {shipping.max_retries}")
    click.echo(f"  log_level: {shipping.log_level}")
    click.echo()

    click.echo(style_header("Lifecycle"))
    click.echo(f"  sweep_interval: {loaded.lifecycle.sweep_interval}s")
    click.echo(f"  stale_max_age: {loaded.lifecycle.stale_max_age}s")
    click.echo()


@click.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("check")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_check(as_json: bool) -> None:
    """Validate configuration from the environment.

    Exits with status 1 and lists every problem if the configuration would
    prevent the server from starting.
    """
    try:
        loaded = load_config_from_env()
    except ConfigurationError as e:
        click.echo(style_error("Invalid configuration"), err=True)
        for problem in e.errors:
            click.echo(f"  - {problem}", err=True)
        sys.exit(1)

    if as_json:
        config_dict = loaded.model_dump(mode="json")
        if config_dict["log_shipping"].get("api_key"):
            config_dict["log_shipping"]["api_key"] = "***"
        click.echo(json.dumps(config_dict, indent=2))
        return

    _print_summary(loaded)
    click.echo(style_success("Configuration is valid"))
