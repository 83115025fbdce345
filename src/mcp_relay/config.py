"""Application configuration for mcp-relay.

Defines configuration models for log shipping, the request lifecycle sweep,
and server identity. Configuration comes from environment variables and is
validated once, before any component is constructed; invalid configuration
prevents startup.

Example usage:
    config = load_config_from_env()
    shipper = LogShipper(config.log_shipping)

Environment variables:
    LOG_SHIPPING_ENABLED           "true" to ship logs (default: false)
    LOG_INGESTION_URL              HTTPS endpoint of the log ingestion API
    LOG_INGESTION_API_KEY          Sent as X-API-Key when set
    LOG_SHIPPING_REQUIRE_API_KEY   "true" to refuse to start without a key
    LOG_SHIPPING_BATCH_SIZE        Records per delivery (1-1000, default 500)
    LOG_SHIPPING_INTERVAL          Flush interval in milliseconds (>= 1000, default 5000)
    LOG_SHIPPING_MAX_RETRIES       Delivery attempts per batch (default 3)
    LOG_LEVEL                      DEBUG, INFO, WARN, ERROR or FATAL (default ERROR)
    RELAY_SERVER_NAME              serverName on shipped records
    RELAY_USER                     user on shipped records
    RELAY_INTEGRATION              integration on shipped records
    PROJECT_ID / ORGANIZATION_ID   Optional identifiers on shipped records
"""

from __future__ import annotations

__all__ = [
    "LifecycleConfig",
    "LogLevelName",
    "LogShippingConfig",
    "RelayConfig",
    "load_config_from_env",
    "validate_shipping_config",
]

import os
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, ValidationError

from mcp_relay.constants import (
    APP_NAME,
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STALE_MAX_AGE_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    MIN_FLUSH_INTERVAL_SECONDS,
    UNKNOWN_VALUE,
)
from mcp_relay.exceptions import ConfigurationError

LogLevelName = Literal["DEBUG", "INFO", "WARN", "ERROR", "FATAL"]


# =============================================================================
# Configuration Models
# =============================================================================


class LogShippingConfig(BaseModel):
    """Log shipping configuration.

    Attributes:
        enabled: Ship structured logs to the ingestion API.
        endpoint: HTTPS URL of the ingestion API.
        api_key: Optional API key, sent as X-API-Key.
        require_api_key: Refuse to start when no API key is configured.
        batch_size: Max records per delivery (shipper, authoritative).
        flush_interval: Seconds between scheduled shipper flushes.
        max_retries: Delivery attempts per batch.
        log_level: Minimum level the structured logger records.
        batcher_batch_size: Upstream batcher threshold (looser smoothing layer).
        batcher_flush_interval: Seconds between batcher flushes.
    """

    enabled: bool = False
    endpoint: str = ""
    api_key: str | None = None
    require_api_key: bool = False
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL_SECONDS, ge=MIN_FLUSH_INTERVAL_SECONDS)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=10)
    log_level: LogLevelName = "ERROR"
    batcher_batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    batcher_flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL_SECONDS, gt=0)


class LifecycleConfig(BaseModel):
    """Request lifecycle sweep configuration.

    Attributes:
        sweep_interval: Seconds between stale-operation sweeps.
        stale_max_age: Operations older than this (seconds) are cancelled.
    """

    sweep_interval: float = Field(default=DEFAULT_SWEEP_INTERVAL_SECONDS, gt=0)
    stale_max_age: float = Field(default=DEFAULT_STALE_MAX_AGE_SECONDS, gt=0)


class RelayConfig(BaseModel):
    """Top-level configuration for one relay server instance."""

    server_name: str = APP_NAME
    user: str = UNKNOWN_VALUE
    integration: str = UNKNOWN_VALUE
    project_id: str | None = None
    organization_id: str | None = None
    log_shipping: LogShippingConfig = Field(default_factory=LogShippingConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)


# =============================================================================
# Validation
# =============================================================================


def validate_shipping_config(config: LogShippingConfig) -> list[str]:
    """Check the settings that only matter when shipping is enabled.

    Field ranges are enforced by the model itself; this covers the
    cross-field rules.

    Args:
        config: Log shipping configuration.

    Returns:
        List of problems, empty if the configuration is usable.
    """
    if not config.enabled:
        return []

    errors: list[str] = []
    if not config.endpoint:
        errors.append("LogShipper: endpoint is required")
    elif not config.endpoint.startswith("https://"):
        errors.append("LogShipper: endpoint must use HTTPS")

    if config.require_api_key and not config.api_key:
        errors.append("LogShipper: apiKey is required when requireApiKey is true")

    return errors


# =============================================================================
# Environment Loading
# =============================================================================


def _env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _format_validation_error(exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        problems.append(f"{location}: {err['msg']}")
    return problems


def load_config_from_env(environ: Mapping[str, str] | None = None) -> RelayConfig:
    """Build and validate configuration from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ).

    Returns:
        Validated RelayConfig.

    Raises:
        ConfigurationError: If any value is missing, malformed or out of range.
            All problems are collected, not just the first.
    """
    env = os.environ if environ is None else environ
    errors: list[str] = []

    shipping: dict[str, Any] = {
        "enabled": _env_flag(env.get("LOG_SHIPPING_ENABLED")),
        "endpoint": env.get("LOG_INGESTION_URL", ""),
        "require_api_key": _env_flag(env.get("LOG_SHIPPING_REQUIRE_API_KEY")),
        "batch_size": env.get("LOG_SHIPPING_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)),
        "max_retries": env.get("LOG_SHIPPING_MAX_RETRIES", str(DEFAULT_MAX_RETRIES)),
        "log_level": env.get("LOG_LEVEL", "ERROR").upper(),
    }
    if env.get("LOG_INGESTION_API_KEY"):
        shipping["api_key"] = env["LOG_INGESTION_API_KEY"]

    # Interval is configured in milliseconds for parity with existing deployments
    interval_ms = env.get("LOG_SHIPPING_INTERVAL")
    if interval_ms is not None:
        try:
            shipping["flush_interval"] = float(interval_ms) / 1000
        except ValueError:
            errors.append(f"LOG_SHIPPING_INTERVAL must be a number of milliseconds, got {interval_ms!r}")

    raw: dict[str, Any] = {
        "server_name": env.get("RELAY_SERVER_NAME", APP_NAME),
        "user": env.get("RELAY_USER", UNKNOWN_VALUE),
        "integration": env.get("RELAY_INTEGRATION", UNKNOWN_VALUE),
        "project_id": env.get("PROJECT_ID") or None,
        "organization_id": env.get("ORGANIZATION_ID") or None,
        "log_shipping": shipping,
    }

    config: RelayConfig | None = None
    try:
        config = RelayConfig.model_validate(raw)
    except ValidationError as e:
        errors.extend(_format_validation_error(e))

    if config is not None:
        errors.extend(validate_shipping_config(config.log_shipping))

    if errors or config is None:
        raise ConfigurationError(
            f"Invalid configuration: {'; '.join(errors)}",
            errors=errors,
        )

    return config
