"""mcp-relay: request lifecycle and telemetry core for an MCP tool server.

Subpackages:
    lifecycle/   Operation tracking, cooperative cancellation, progress notifications
    telemetry/   Structured logging and batched shipping to the log ingestion API
    cli/         Command line entry point (config check, start)
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
