"""System logger for operational events of the telemetry pipeline itself.

The log shipper and batcher cannot report their own failures through the
pipeline they implement, so they log here instead. Records are dicts with an
"event" key plus context fields.

Logging strategy:
- Console (stderr) only: stdout is reserved for the MCP protocol stream
- INFO and above
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "get_system_logger",
]

import json
import logging
import sys

from mcp_relay.constants import APP_NAME


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages and appends the
    remaining fields as compact JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human-readable console output.

        Args:
            record: The log record to format.

        Returns:
            str: Formatted log message with level prefix.
        """
        if isinstance(record.msg, dict):
            fields = dict(record.msg)
            msg = fields.pop("message", None) or fields.pop("event", "")
            if fields:
                return f"{record.levelname}: {msg} {json.dumps(fields, default=str)}"
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.msg}"


# Module-level singleton logger - initialized once at import
_system_logger: logging.Logger | None = None


def get_system_logger() -> logging.Logger:
    """Get the singleton system logger instance.

    Creates the logger on first call with a stderr handler.

    Returns:
        logging.Logger: Configured system logger instance.

    Example:
        >>> from mcp_relay.telemetry.system.system_logger import get_system_logger
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "log_flush_failed", "error": "..."})
        # Logged to stderr
    """
    global _system_logger

    # Return existing logger if already created
    if _system_logger is not None:
        return _system_logger

    _system_logger = logging.getLogger(f"{APP_NAME}.system")
    _system_logger.setLevel(logging.INFO)
    _system_logger.propagate = False  # Don't propagate to root logger

    # Close and remove any existing handlers to avoid duplicates and resource leaks
    for handler in _system_logger.handlers:
        handler.close()
    _system_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(ConsoleFormatter())
    _system_logger.addHandler(stderr_handler)

    return _system_logger
