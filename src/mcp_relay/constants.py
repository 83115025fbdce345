"""Application-wide constants for mcp-relay.

Constants that define application behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    "DIAGNOSTIC_PREFIX",
    # Request lifecycle
    "DEFAULT_STALE_MAX_AGE_SECONDS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "CANCEL_REASON_TIMED_OUT",
    "CANCEL_REASON_SHUTDOWN",
    "CANCEL_REASON_CLIENT_ABORTED",
    # Progress notifications
    "PROGRESS_NOTIFICATION_METHOD",
    "CANCELLED_NOTIFICATION_METHOD",
    "MIN_PROGRESS_INTERVAL_SECONDS",
    # Log shipping
    "DEFAULT_BATCH_SIZE",
    "MIN_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "DEFAULT_FLUSH_INTERVAL_SECONDS",
    "MIN_FLUSH_INTERVAL_SECONDS",
    "DEFAULT_MAX_RETRIES",
    "RETRY_BASE_DELAY_SECONDS",
    "RATE_LIMIT_BASE_DELAY_SECONDS",
    "HEALTHY_FLUSH_INTERVAL_MULTIPLIER",
    "DELIVERY_TIMEOUT_SECONDS",
    "API_KEY_HEADER",
    "API_KEY_ENV_VAR",
    # Log record normalisation
    "LOG_LEVELS",
    "WIRE_LEVEL_MAP",
    "DEFAULT_WIRE_LEVEL",
    "COMPONENT_MAP",
    "DEFAULT_COMPONENT",
    "UNKNOWN_VALUE",
    "MAX_LOGGED_RESPONSE_CHARS",
    # Transport errors
    "TRANSPORT_ERRORS",
]

import httpx

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for logger names, session ids and the default server name.
APP_NAME: str = "mcp-relay"

# Prefix on every local diagnostic line written to stderr
DIAGNOSTIC_PREFIX: str = "MCP-RELAY"

# ============================================================================
# Request Lifecycle
# ============================================================================

# Operations older than this are cancelled by the staleness sweep (seconds)
DEFAULT_STALE_MAX_AGE_SECONDS: float = 300.0

# How often the periodic driver sweeps stale operations and orphaned
# progress state (seconds)
DEFAULT_SWEEP_INTERVAL_SECONDS: float = 60.0

CANCEL_REASON_TIMED_OUT: str = "Request timed out"
CANCEL_REASON_SHUTDOWN: str = "Server shutting down"

# Handler task was cancelled by the MCP session (client sent notifications/cancelled)
CANCEL_REASON_CLIENT_ABORTED: str = "Request cancelled by client"

# ============================================================================
# Progress Notifications
# ============================================================================

PROGRESS_NOTIFICATION_METHOD: str = "notifications/progress"
CANCELLED_NOTIFICATION_METHOD: str = "notifications/cancelled"

# Minimum spacing between two emitted notifications on one progress token
MIN_PROGRESS_INTERVAL_SECONDS: float = 0.1

# ============================================================================
# Log Shipping
# ============================================================================

DEFAULT_BATCH_SIZE: int = 500
MIN_BATCH_SIZE: int = 1
MAX_BATCH_SIZE: int = 1000

DEFAULT_FLUSH_INTERVAL_SECONDS: float = 5.0
MIN_FLUSH_INTERVAL_SECONDS: float = 1.0

DEFAULT_MAX_RETRIES: int = 3

# Backoff before retry N is base * 2^(N-1); rate limits (429) back off longer
RETRY_BASE_DELAY_SECONDS: float = 0.5
RATE_LIMIT_BASE_DELAY_SECONDS: float = 1.0

# Shipper reports unhealthy when the last successful flush is older than
# this many flush intervals
HEALTHY_FLUSH_INTERVAL_MULTIPLIER: int = 3

# Per-attempt HTTP timeout for the ingestion endpoint
DELIVERY_TIMEOUT_SECONDS: float = 10.0

API_KEY_HEADER: str = "X-API-Key"
API_KEY_ENV_VAR: str = "LOG_INGESTION_API_KEY"

# ============================================================================
# Log Record Normalisation
# ============================================================================

# Ordered by severity (index = priority)
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARN", "ERROR", "FATAL")

# The ingestion API only accepts four lowercase levels
WIRE_LEVEL_MAP: dict[str, str] = {
    "debug": "debug",
    "info": "info",
    "warn": "warn",
    "warning": "warn",
    "error": "error",
    "fatal": "error",
}
DEFAULT_WIRE_LEVEL: str = "info"

# Accepted component enum on the ingestion API
COMPONENT_MAP: dict[str, str] = {
    "server": "client",
    "client": "client",
    "tools": "tools",
    "oauth-client": "oauth-client",
}
DEFAULT_COMPONENT: str = "client"

UNKNOWN_VALUE: str = "unknown"

# Tool responses larger than this (serialized chars) are replaced by a marker
MAX_LOGGED_RESPONSE_CHARS: int = 10_000

# ============================================================================
# Transport Errors
# ============================================================================

# Network-level failures talking to the ingestion endpoint. Retryable.
# httpx.TransportError covers NetworkError (connect, read, write, close),
# TimeoutException, ProtocolError, ProxyError and UnsupportedProtocol.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    ConnectionError,
    httpx.TransportError,
)
