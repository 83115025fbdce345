"""Structured logger: leveled facade over local diagnostics and log shipping.

Every accepted call is mirrored as one JSON line on stderr (stdout carries the
MCP protocol stream and must stay clean). When shipping is enabled, a full
LogRecord is also handed to the LogBatcher.

Levels are ordered DEBUG < INFO < WARN < ERROR < FATAL; calls below the
configured minimum are discarded before anything is built.

Usage:
    logger = StructuredLogger(component="server", log_level="INFO", batcher=batcher)
    logger.info("SERVER_START", "MCP server started", {"transport": "stdio"})
    logger.log_tool_success("search_pages", duration_ms=120, response_data=result)
"""

from __future__ import annotations

__all__ = [
    "StructuredLogger",
    "truncate_if_needed",
]

import json
import logging
import uuid
from typing import Any, Mapping

from mcp_relay.config import LogLevelName
from mcp_relay.constants import (
    APP_NAME,
    DIAGNOSTIC_PREFIX,
    LOG_LEVELS,
    MAX_LOGGED_RESPONSE_CHARS,
    UNKNOWN_VALUE,
)
from mcp_relay.telemetry.models.log_record import LogRecord, generate_session_id
from mcp_relay.telemetry.shipping.log_batcher import LogBatcher
from mcp_relay.utils.logging.iso_formatter import iso_timestamp
from mcp_relay.utils.logging.logger_setup import setup_stderr_logger

_PRIORITY: dict[str, int] = {level: index for index, level in enumerate(LOG_LEVELS)}

# stdlib levels used for the local mirror
_STDLIB_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
}


def _serialized_size(data: Any) -> int:
    return len(json.dumps(data, default=str))


def truncate_if_needed(data: Any, max_size: int = MAX_LOGGED_RESPONSE_CHARS) -> Any:
    """Replace oversized data with a marker instead of dropping it silently.

    Args:
        data: Any JSON-compatible value.
        max_size: Largest serialized size kept as-is.

    Returns:
        The data unchanged, or a dict flagged with "_truncated".
    """
    if not data:
        return data

    size = _serialized_size(data)
    if size <= max_size:
        return data

    return {
        "_truncated": True,
        "_originalSize": size,
        "_data": f"[TRUNCATED - Original size: {size} chars]",
    }


def _error_status(error: Any) -> int | None:
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status


class StructuredLogger:
    """Leveled structured logger with stderr mirror and optional shipping."""

    def __init__(
        self,
        *,
        component: str = "server",
        log_level: LogLevelName = "ERROR",
        server_name: str = APP_NAME,
        user: str = UNKNOWN_VALUE,
        integration: str = "",
        project_id: str | None = None,
        organization_id: str | None = None,
        batcher: LogBatcher | None = None,
        enable_console: bool = True,
        diagnostic_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the logger.

        Args:
            component: Emitting component (server, tools, oauth-client).
            log_level: Minimum level to record.
            server_name: serverName on shipped records.
            user: user on shipped records.
            integration: Remote API name on shipped records.
            project_id: Optional project identifier.
            organization_id: Optional organization identifier.
            batcher: Batcher to ship through; shipping is off without one.
            enable_console: Mirror records to stderr.
            diagnostic_logger: Logger for the stderr mirror (created if omitted).
        """
        self.component = component
        self.log_level = log_level
        self.server_name = server_name
        self.user = user
        self.integration = integration
        self.project_id = project_id
        self.organization_id = organization_id
        self.batcher = batcher
        self.enable_console = enable_console
        self._fallback_session_id = generate_session_id()

        self._diagnostic = diagnostic_logger or setup_stderr_logger(
            f"{APP_NAME}.diagnostic.{component}",
            f"{DIAGNOSTIC_PREFIX}-{component.upper()}",
        )

    @property
    def session_id(self) -> str:
        if self.batcher is not None:
            return self.batcher.session_id
        return self._fallback_session_id

    @property
    def shipping_enabled(self) -> bool:
        return self.batcher is not None and self.batcher.shipper.config.enabled

    def is_enabled_for(self, level: str) -> bool:
        return _PRIORITY[level] >= _PRIORITY[self.log_level]

    # ------------------------------------------------------------------
    # Leveled API
    # ------------------------------------------------------------------

    def debug(self, action: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.log("DEBUG", action, message, metadata)

    def info(self, action: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.log("INFO", action, message, metadata)

    def warn(self, action: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.log("WARN", action, message, metadata)

    def error(self, action: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.log("ERROR", action, message, metadata)

    def fatal(self, action: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.log("FATAL", action, message, metadata)

    def log(
        self,
        level: LogLevelName,
        action: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record one event at the given level.

        Args:
            level: DEBUG, INFO, WARN, ERROR or FATAL.
            action: Machine-friendly event name (e.g., "REQUEST_CANCELLED").
            message: Human-readable description.
            metadata: Optional structured details.
        """
        if not self.is_enabled_for(level):
            return

        timestamp = iso_timestamp()
        session_id = self.session_id

        if self.enable_console:
            entry: dict[str, Any] = {
                "timestamp": timestamp,
                "sessionId": session_id,
                "user": self.user,
                "component": self.component,
                "level": level,
                "action": action,
                "message": message,
            }
            if metadata:
                entry["metadata"] = dict(metadata)
            self._diagnostic.log(_STDLIB_LEVEL[level], entry)

        if self.shipping_enabled and self.batcher is not None:
            self.batcher.add(
                LogRecord(
                    timestamp=timestamp,
                    level=level,
                    session_id=session_id,
                    user=self.user,
                    integration=self.integration,
                    component=self.component,
                    action=action,
                    message=message,
                    server_name=self.server_name,
                    project_id=self.project_id,
                    organization_id=self.organization_id,
                    metadata=dict(metadata) if metadata else None,
                )
            )

    # ------------------------------------------------------------------
    # HTTP calls to the remote API
    # ------------------------------------------------------------------

    def log_request_start(self, method: str, url: str, metadata: Mapping[str, Any] | None = None) -> None:
        self.debug("HTTP_REQUEST_START", f"{method} {url}", {"method": method, "url": url, **(metadata or {})})

    def log_request_success(
        self,
        method: str,
        url: str,
        status: int,
        duration_ms: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.info(
            "HTTP_REQUEST_SUCCESS",
            f"{method} {url} - {status} ({duration_ms:.0f}ms)",
            {"method": method, "url": url, "status": status, "duration_ms": duration_ms, **(metadata or {})},
        )

    def log_request_error(
        self,
        method: str,
        url: str,
        error: BaseException | str,
        duration_ms: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.error(
            "HTTP_REQUEST_ERROR",
            f"{method} {url} - {error}",
            {
                "method": method,
                "url": url,
                "error": str(error),
                "duration_ms": duration_ms,
                "status": _error_status(error),
                **(metadata or {}),
            },
        )

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    def log_tool_start(self, tool_name: str, params: Mapping[str, Any] | None) -> str:
        """Log a tool call starting.

        Returns:
            Execution id, for correlating the matching success/error entry.
        """
        execution_id = f"exec_{uuid.uuid4().hex[:12]}"
        self.info(
            tool_name,
            f"Executing {tool_name}",
            {
                "toolParams": dict(params) if params else {},
                "paramCount": len(params or {}),
                "executionId": execution_id,
            },
        )
        return execution_id

    def log_tool_success(
        self,
        tool_name: str,
        duration_ms: float,
        response_data: Any = None,
        http_status: int | None = None,
    ) -> None:
        metadata: dict[str, Any] = {
            "duration_ms": duration_ms,
            "responseData": truncate_if_needed(response_data),
            "responseSize": _serialized_size(response_data) if response_data else 0,
        }
        if http_status:
            metadata["httpStatus"] = http_status
        self.info(tool_name, f"{tool_name} completed successfully", metadata)

    def log_tool_error(
        self,
        tool_name: str,
        error: BaseException,
        duration_ms: float,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        self.error(
            tool_name,
            f"{tool_name} failed",
            {
                "duration_ms": duration_ms,
                "errorDetails": {
                    "message": str(error),
                    "code": getattr(error, "code", None),
                    "status": _error_status(error),
                },
                "toolParams": dict(params) if params else None,
                "errorType": type(error).__name__,
            },
        )

    # ------------------------------------------------------------------
    # Auth and rate limiting
    # ------------------------------------------------------------------

    def log_auth_event(self, event: str, success: bool, metadata: Mapping[str, Any] | None = None) -> None:
        self.log(
            "INFO" if success else "ERROR",
            "AUTH_EVENT",
            f"Authentication {event}: {'success' if success else 'failed'}",
            {"event": event, "success": success, **(metadata or {})},
        )

    def log_rate_limit(self, action: str, delay_ms: float, metadata: Mapping[str, Any] | None = None) -> None:
        self.warn(
            "RATE_LIMIT",
            f"Rate limit applied: {action}",
            {"action": action, "delay_ms": delay_ms, **(metadata or {})},
        )

    # ------------------------------------------------------------------
    # Status and lifecycle
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "config": {
                "log_level": self.log_level,
                "component": self.component,
                "enable_console": self.enable_console,
                "enable_shipping": self.shipping_enabled,
                "server_name": self.server_name,
            },
        }
        if self.batcher is not None:
            status["batcher_status"] = self.batcher.get_batch_status()
        return status

    def start(self) -> None:
        if self.batcher is not None:
            self.batcher.start()

    async def shutdown(self) -> None:
        """Flush whatever the batcher still holds into the shipper."""
        if self.batcher is not None:
            await self.batcher.shutdown()
