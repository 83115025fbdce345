"""Log formatting utilities for single-line JSON diagnostics.

Provides ISO 8601 timestamp formatting for the stderr diagnostic stream.
Every line is prefixed with a component tag so operators can grep one
component's output out of the shared stream.
"""

from __future__ import annotations

__all__ = ["DiagnosticFormatter", "iso_timestamp"]

import json
import logging
from datetime import datetime, timezone


def iso_timestamp(epoch_seconds: float | None = None) -> str:
    """Format a UNIX timestamp as ISO 8601 UTC with milliseconds.

    Args:
        epoch_seconds: Seconds since the epoch. Defaults to now.

    Returns:
        str: Timestamp like 2025-12-04T10:48:37.123Z
    """
    if epoch_seconds is None:
        moment = datetime.now(timezone.utc)
    else:
        moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DiagnosticFormatter(logging.Formatter):
    """Formatter producing `[PREFIX] {json}` lines with ISO 8601 timestamps (UTC).

    Example:
        [MCP-RELAY-SERVER] {"timestamp": "2025-12-04T10:48:37.123Z", "level": "INFO", ...}
    """

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a prefixed JSON line.

        Args:
            record: The log record to format

        Returns:
            str: Prefixed JSON log entry
        """
        # Handle dict messages (structured logging)
        if isinstance(record.msg, dict):
            log_data = record.msg
        else:
            log_data = {"message": str(record.msg)}

        # Records built by StructuredLogger carry their own timestamp
        if "timestamp" not in log_data:
            log_data = {"timestamp": iso_timestamp(record.created), **log_data}

        # default=str keeps unserializable metadata from breaking the line
        return f"[{self.prefix}] {json.dumps(log_data, default=str)}"
