"""Logger setup utilities for stderr diagnostic loggers.

stdout carries the MCP protocol stream, so every local diagnostic must go to
stderr. These helpers create dedicated, non-propagating loggers for that.
"""

from __future__ import annotations

__all__ = ["setup_stderr_logger"]

import logging
import sys
from typing import TextIO

from mcp_relay.utils.logging.iso_formatter import DiagnosticFormatter


def setup_stderr_logger(
    logger_name: str,
    prefix: str,
    log_level: int = logging.DEBUG,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Set up a logger that writes prefixed JSON lines to stderr.

    Level filtering for structured logs happens before records reach this
    logger, so the default level lets everything through.

    Args:
        logger_name: Name for the logger (e.g., "mcp-relay.diagnostic.server")
        prefix: Line prefix (e.g., "MCP-RELAY-SERVER")
        log_level: Logging level (default: DEBUG)
        stream: Output stream (default: sys.stderr at call time)

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)
    logger.propagate = False  # Don't propagate to root logger

    # Close and remove any existing handlers to avoid duplicates and resource leaks
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(DiagnosticFormatter(prefix))
    logger.addHandler(handler)

    return logger
