"""Pydantic models for records shipped to the log ingestion API."""

from mcp_relay.telemetry.models.log_record import (
    LogBatch,
    LogRecord,
    coerce_record,
    generate_session_id,
    is_transportable,
    normalize_component,
    normalize_level,
    normalize_record,
    sanitize_metadata,
)

__all__ = [
    "LogBatch",
    "LogRecord",
    "coerce_record",
    "generate_session_id",
    "is_transportable",
    "normalize_component",
    "normalize_level",
    "normalize_record",
    "sanitize_metadata",
]
