"""System logger for the telemetry pipeline's own operational events."""

from mcp_relay.telemetry.system.system_logger import ConsoleFormatter, get_system_logger

__all__ = [
    "ConsoleFormatter",
    "get_system_logger",
]
