"""Unit tests for custom exceptions.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

from mcp import McpError

from mcp_relay.exceptions import (
    OPERATION_CANCELLED_CODE,
    ConfigurationError,
    LogDeliveryError,
    OperationCancelledError,
    PermanentDeliveryError,
    TransientDeliveryError,
)


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_defaults_errors_to_message(self) -> None:
        """Without an explicit list, the message is the only error."""
        # Act
        err = ConfigurationError("endpoint is required")

        # Assert
        assert err.errors == ["endpoint is required"]

    def test_keeps_error_list(self) -> None:
        """An explicit error list is kept as given."""
        # Act
        err = ConfigurationError("Invalid configuration", errors=["a", "b"])

        # Assert
        assert err.errors == ["a", "b"]
        assert str(err) == "Invalid configuration"


class TestDeliveryErrors:
    """Tests for the LogDeliveryError hierarchy."""

    def test_transient_is_retryable(self) -> None:
        """TransientDeliveryError is retryable, PermanentDeliveryError is not."""
        # Assert
        assert TransientDeliveryError("x").retryable is True
        assert PermanentDeliveryError("x").retryable is False
        assert issubclass(TransientDeliveryError, LogDeliveryError)
        assert issubclass(PermanentDeliveryError, LogDeliveryError)

    def test_carries_status_and_body(self) -> None:
        """Status and response body are exposed as attributes."""
        # Act
        err = PermanentDeliveryError("rejected", status=400, response_body='{"error":"bad"}')

        # Assert
        assert err.status == 400
        assert err.response_body == '{"error":"bad"}'
        assert "status=400" in repr(err)


class TestOperationCancelledError:
    """Tests for OperationCancelledError."""

    def test_inherits_from_mcp_error(self) -> None:
        """OperationCancelledError should be serializable by FastMCP."""
        # Assert
        assert issubclass(OperationCancelledError, McpError)

    def test_message_without_reason(self) -> None:
        """Without a reason the message is generic."""
        # Act
        err = OperationCancelledError("req-1")

        # Assert
        assert str(err) == "Request was cancelled"
        assert err.error.code == OPERATION_CANCELLED_CODE
        assert err.error.data == {"request_id": "req-1"}

    def test_message_with_reason_and_tool(self) -> None:
        """The reason is appended and included in error data."""
        # Act
        err = OperationCancelledError("req-1", "User pressed stop", operation_name="search_pages")

        # Assert
        assert err.message == "Request was cancelled: User pressed stop"
        assert err.reason == "User pressed stop"
        assert err.error.data == {
            "request_id": "req-1",
            "tool_name": "search_pages",
            "reason": "User pressed stop",
        }

    def test_no_data_when_nothing_known(self) -> None:
        """Error data is omitted entirely when empty."""
        # Act
        err = OperationCancelledError()

        # Assert
        assert err.error.data is None
