"""Pydantic models for log records shipped to the log ingestion API.

A LogRecord is built by the StructuredLogger and is immutable once
constructed. The shipper normalises every record once, right before
transport:

- level is collapsed onto the four levels the API accepts
- component is mapped onto the API's component enum
- empty required fields get defaults
- metadata is sanitised so the payload always serializes

Records that are still missing a required field after normalisation are
dropped, never retried.

Wire format (camelCase, as the API expects):
    {"logs": [{"timestamp": "...", "level": "info", "sessionId": "...", ...}]}
"""

from __future__ import annotations

__all__ = [
    "LogBatch",
    "LogRecord",
    "MAX_METADATA_KEYS",
    "coerce_record",
    "generate_session_id",
    "is_transportable",
    "normalize_component",
    "normalize_level",
    "normalize_record",
    "sanitize_metadata",
]

import json
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_relay.constants import (
    APP_NAME,
    COMPONENT_MAP,
    DEFAULT_COMPONENT,
    DEFAULT_WIRE_LEVEL,
    UNKNOWN_VALUE,
    WIRE_LEVEL_MAP,
)
from mcp_relay.utils.logging.iso_formatter import iso_timestamp

# Metadata keys beyond this are dropped and counted in "_droppedKeys"
MAX_METADATA_KEYS: int = 64


class LogRecord(BaseModel):
    """
    One structured log record (unit of transport to the ingestion API).

    Required on the wire: timestamp, level, user, message. Every other
    string field falls back to a default during normalisation.
    """

    # --- core ---
    timestamp: str = ""  # ISO 8601, e.g. "2025-12-11T10:30:45.123Z"
    level: str = ""  # debug/info/warn/error/fatal before normalisation
    message: str = ""

    # --- identity ---
    session_id: str = Field("", alias="sessionId")
    user: str = ""
    server_name: str = Field("", alias="serverName")
    project_id: Optional[str] = Field(None, alias="projectId")
    organization_id: Optional[str] = Field(None, alias="organizationId")

    # --- source ---
    integration: str = ""  # remote API name, e.g. "notion"
    component: str = ""  # client / tools / oauth-client
    action: str = ""  # machine-friendly event or tool name

    # --- additional structured details ---
    metadata: Optional[Dict[str, Any]] = None  # duration_ms, httpStatus, etc.

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with API field names, omitting absent optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LogBatch(BaseModel):
    """Request body for one delivery attempt."""

    logs: List[LogRecord]

    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return {"logs": [record.to_wire() for record in self.logs]}


def generate_session_id() -> str:
    """Generate a session identifier, e.g. "mcp-relay-1733309317123-3f9a1c2"."""
    return f"{APP_NAME}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


def normalize_level(level: Any) -> str:
    """Map any level spelling onto debug/info/warn/error (fatal -> error)."""
    return WIRE_LEVEL_MAP.get(str(level or DEFAULT_WIRE_LEVEL).lower(), DEFAULT_WIRE_LEVEL)


def normalize_component(component: Any) -> str:
    """Map a component name onto the API enum (unknown -> "client")."""
    return COMPONENT_MAP.get(str(component or DEFAULT_COMPONENT).lower(), DEFAULT_COMPONENT)


def _is_json_serializable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def sanitize_metadata(metadata: Mapping[Any, Any] | None) -> dict[str, Any]:
    """Make a metadata mapping safe to serialize.

    - None values are dropped
    - callables become "[Function]"
    - values that fail JSON serialization (cycles, custom objects) become str(value)
    - at most MAX_METADATA_KEYS keys are kept

    Args:
        metadata: Caller-supplied metadata, possibly None.

    Returns:
        A new dict containing only JSON-serializable values.
    """
    if not metadata or not isinstance(metadata, Mapping):
        return {}

    cleaned: dict[str, Any] = {}
    dropped = 0
    for key, value in metadata.items():
        if value is None:
            continue
        if len(cleaned) >= MAX_METADATA_KEYS:
            dropped += 1
            continue

        if callable(value):
            cleaned[str(key)] = "[Function]"
        elif _is_json_serializable(value):
            cleaned[str(key)] = value
        else:
            cleaned[str(key)] = str(value)

    if dropped:
        cleaned["_droppedKeys"] = dropped
    return cleaned


def coerce_record(entry: LogRecord | Mapping[str, Any]) -> LogRecord | None:
    """Turn a queued entry into a LogRecord, or None if it is malformed.

    Args:
        entry: A LogRecord, or a mapping using either field names or API aliases.

    Returns:
        The record, or None when validation fails.
    """
    if isinstance(entry, LogRecord):
        return entry
    if not isinstance(entry, Mapping):
        return None
    try:
        return LogRecord.model_validate(dict(entry))
    except ValidationError:
        return None


def normalize_record(record: LogRecord) -> LogRecord:
    """Return a copy of the record with API-compatible values and defaults.

    Args:
        record: Record as produced by the logger (or a caller).

    Returns:
        A new, normalised LogRecord.
    """
    update: dict[str, Any] = {
        "timestamp": record.timestamp or iso_timestamp(),
        "level": normalize_level(record.level),
        "session_id": record.session_id or generate_session_id(),
        "user": record.user or UNKNOWN_VALUE,
        "integration": record.integration or UNKNOWN_VALUE,
        "component": normalize_component(record.component),
        "action": record.action or UNKNOWN_VALUE,
        "message": record.message or "No message",
        "server_name": record.server_name or APP_NAME,
        "project_id": record.project_id or "",
        "organization_id": record.organization_id or "",
    }
    if record.metadata is not None:
        update["metadata"] = sanitize_metadata(record.metadata)
    return record.model_copy(update=update)


def is_transportable(record: LogRecord) -> bool:
    """Check the fields the API rejects records without."""
    return bool(record.timestamp and record.level and record.user and record.message)
