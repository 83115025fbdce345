"""Custom exceptions for mcp-relay.

This module contains all custom exceptions used throughout the package.
Exceptions are organized into three categories:

Startup Failures (server must not start):
    - ConfigurationError: Log shipping or lifecycle configuration is invalid

Delivery Failures (surface only to whoever awaited a flush):
    - LogDeliveryError: Base for failed deliveries to the ingestion API
    - TransientDeliveryError: 5xx, 429 or network failure, retried with backoff
    - PermanentDeliveryError: 4xx other than 429, never retried

Caller-Visible Outcomes:
    - OperationCancelledError: A tracked tool call was cancelled cooperatively

Usage:
    from mcp_relay.exceptions import ConfigurationError, TransientDeliveryError
"""

from __future__ import annotations

__all__ = [
    "ConfigurationError",
    "LogDeliveryError",
    "OPERATION_CANCELLED_CODE",
    "OperationCancelledError",
    "PermanentDeliveryError",
    "TransientDeliveryError",
]

from typing import Any

from mcp import McpError
from mcp.types import ErrorData

# =============================================================================
# Startup Failures
# =============================================================================


class ConfigurationError(Exception):
    """Configuration is invalid or incomplete.

    Raised when:
    - Log shipping is enabled without an ingestion endpoint
    - The ingestion endpoint does not use HTTPS
    - An API key is required but not configured
    - Environment values fail Pydantic validation

    Attributes:
        errors: Individual problems, one per invalid setting.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


# =============================================================================
# Delivery Failures
# =============================================================================


class LogDeliveryError(Exception):
    """A batch of log records could not be delivered to the ingestion API.

    Attributes:
        status: HTTP status code, or None for network-level failures.
        response_body: Response body text when the server answered.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.response_body = response_body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, status={self.status!r})"


class TransientDeliveryError(LogDeliveryError):
    """Delivery failed for a reason worth retrying (5xx, 429, network error)."""

    retryable = True


class PermanentDeliveryError(LogDeliveryError):
    """Delivery was rejected by the API (4xx other than 429).

    Retrying the same payload would fail the same way, so the shipper raises
    this on the first attempt.
    """


# =============================================================================
# Caller-Visible Outcomes
# =============================================================================

# Custom JSON-RPC error code for cancelled operations
# In the reserved range -32000 to -32099 for server-defined errors
OPERATION_CANCELLED_CODE = -32002


class OperationCancelledError(McpError):
    """Raised to the caller of a tool call whose operation was cancelled.

    Distinguishable from a generic tool failure so clients can tell a
    deliberate cancellation from an error. Inherits from McpError so FastMCP
    serializes it as a proper MCP error response.

    Attributes:
        operation_id: Identifier of the cancelled operation.
        reason: Cancellation reason, if one was given.
        operation_name: Tool name, if known.
    """

    def __init__(
        self,
        operation_id: str | int | None = None,
        reason: str | None = None,
        *,
        operation_name: str | None = None,
    ) -> None:
        self.operation_id = operation_id
        self.reason = reason
        self.operation_name = operation_name

        message = "Request was cancelled"
        if reason:
            message = f"{message}: {reason}"

        data: dict[str, Any] = {}
        if operation_id is not None:
            data["request_id"] = operation_id
        if operation_name is not None:
            data["tool_name"] = operation_name
        if reason is not None:
            data["reason"] = reason

        super().__init__(
            ErrorData(
                code=OPERATION_CANCELLED_CODE,
                message=message,
                data=data or None,
            )
        )
        self.message = message

    def __str__(self) -> str:
        return self.message
