"""Logging utilities: stderr formatters and logger setup."""

from mcp_relay.utils.logging.iso_formatter import DiagnosticFormatter, iso_timestamp
from mcp_relay.utils.logging.logger_setup import setup_stderr_logger

__all__ = [
    "DiagnosticFormatter",
    "iso_timestamp",
    "setup_stderr_logger",
]
