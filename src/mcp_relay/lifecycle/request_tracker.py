"""Request tracker: registry of in-flight operations and their cancellation tokens.

Single source of truth for which operations are live and cancellable. One
OperationContext exists per operation id; it can be reached by id or through
its progress token, but is never duplicated, so a cancellation is observed
exactly once whichever lookup path reaches it.

Usage:
    tracker = RequestTracker(logger)
    context = tracker.register(request_id, progress_token, "search_pages")
    try:
        await run_tool(context.cancellation)
    finally:
        tracker.cleanup(request_id)

    # From the cancellation notification handler
    tracker.cancel(request_id, "User pressed stop")
"""

from __future__ import annotations

__all__ = [
    "OperationContext",
    "OperationId",
    "ProgressToken",
    "RequestTracker",
]

from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import monotonic
from typing import TYPE_CHECKING

from mcp_relay.constants import (
    CANCEL_REASON_SHUTDOWN,
    CANCEL_REASON_TIMED_OUT,
    DEFAULT_STALE_MAX_AGE_SECONDS,
)
from mcp_relay.lifecycle.cancellation import CancellationToken

if TYPE_CHECKING:
    from mcp_relay.telemetry.structured_logger import StructuredLogger

OperationId = str | int
ProgressToken = str | int


@dataclass(slots=True, eq=False)
class OperationContext:
    """One in-flight operation.

    Attributes:
        operation_id: Caller-supplied unique key (MCP request id).
        cancellation: Token owned by this context.
        progress_token: Progress channel for this operation, if any.
        start_time: monotonic() at registration, used for ages and durations.
        operation_name: Tool name, for diagnostics only.
        started_at: Wall-clock registration time, for diagnostics only.
    """

    operation_id: OperationId
    cancellation: CancellationToken
    progress_token: ProgressToken | None = None
    start_time: float = field(default_factory=monotonic)
    operation_name: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled

    def age(self, now: float | None = None) -> float:
        """Seconds since registration."""
        return (monotonic() if now is None else now) - self.start_time


class RequestTracker:
    """Maps operation ids to contexts, and progress tokens to operation ids.

    Not thread-safe. All callers run on one event loop and no method awaits,
    so each mutation completes before another caller can observe the maps.
    """

    def __init__(self, logger: "StructuredLogger") -> None:
        self.logger = logger
        self._requests: dict[OperationId, OperationContext] = {}
        self._progress_tokens: dict[ProgressToken, OperationId] = {}

    @property
    def active_count(self) -> int:
        return len(self._requests)

    def register(
        self,
        operation_id: OperationId,
        progress_token: ProgressToken | None = None,
        operation_name: str | None = None,
    ) -> OperationContext:
        """Register an operation before it starts executing.

        Args:
            operation_id: Unique id of the operation.
            progress_token: Optional progress channel correlated to it.
            operation_name: Optional tool name for diagnostics.

        Returns:
            The new context, or the existing one (unchanged) if the id is
            already registered.
        """
        existing = self._requests.get(operation_id)
        if existing is not None:
            self.logger.warn(
                "REQUEST_DUPLICATE",
                "Request ID already registered",
                {"requestId": operation_id, "existing": True},
            )
            return existing

        context = OperationContext(
            operation_id=operation_id,
            cancellation=CancellationToken(operation_id),
            progress_token=progress_token,
            start_time=monotonic(),
            operation_name=operation_name,
        )
        self._requests[operation_id] = context

        if progress_token is not None:
            self._progress_tokens[progress_token] = operation_id

        self.logger.info(
            "REQUEST_REGISTERED",
            "New request registered for tracking",
            {
                "requestId": operation_id,
                "hasProgressToken": progress_token is not None,
                "toolName": operation_name,
                "activeRequestCount": len(self._requests),
            },
        )
        return context

    def get(self, operation_id: OperationId) -> OperationContext | None:
        return self._requests.get(operation_id)

    def get_by_progress_token(self, progress_token: ProgressToken) -> OperationContext | None:
        operation_id = self._progress_tokens.get(progress_token)
        if operation_id is None:
            return None
        return self._requests.get(operation_id)

    def cancel(self, operation_id: OperationId, reason: str | None = None) -> bool:
        """Cancel an operation and stop tracking it.

        Args:
            operation_id: Operation to cancel.
            reason: Why, as given by the client.

        Returns:
            True if the operation was cancelled by this call; False if it is
            unknown, already finished, or already cancelled.
        """
        context = self._requests.get(operation_id)
        if context is None:
            self.logger.debug(
                "CANCEL_REQUEST_NOT_FOUND",
                "Request not found for cancellation",
                {"requestId": operation_id, "reason": reason, "activeRequestCount": len(self._requests)},
            )
            return False

        if not context.cancellation.cancel(reason):
            self.logger.debug(
                "CANCEL_REQUEST_ALREADY_ABORTED",
                "Request already cancelled",
                {"requestId": operation_id, "reason": reason},
            )
            return False

        self.logger.info(
            "REQUEST_CANCELLED",
            "Request cancelled successfully",
            {
                "requestId": operation_id,
                "reason": reason,
                "duration_ms": round(context.age() * 1000),
                "toolName": context.operation_name,
                "hadProgressToken": context.progress_token is not None,
            },
        )

        self.cleanup(operation_id)
        return True

    def cleanup(self, operation_id: OperationId) -> None:
        """Stop tracking a completed or cancelled operation. No-op if unknown.

        Holders of the context's token keep seeing its last state.
        """
        context = self._requests.pop(operation_id, None)
        if context is None:
            return

        if context.progress_token is not None:
            # Only drop the mapping if it still points at this operation
            if self._progress_tokens.get(context.progress_token) == operation_id:
                del self._progress_tokens[context.progress_token]

        self.logger.debug(
            "REQUEST_CLEANUP",
            "Request cleaned up",
            {
                "requestId": operation_id,
                "duration_ms": round(context.age() * 1000),
                "toolName": context.operation_name,
                "remainingRequests": len(self._requests),
            },
        )

    def is_active(self, operation_id: OperationId) -> bool:
        context = self._requests.get(operation_id)
        return context is not None and not context.cancelled

    def is_progress_token_active(self, progress_token: ProgressToken) -> bool:
        operation_id = self._progress_tokens.get(progress_token)
        if operation_id is None:
            return False
        return self.is_active(operation_id)

    def get_active_request_ids(self) -> list[OperationId]:
        return list(self._requests)

    def sweep_stale(self, max_age: float = DEFAULT_STALE_MAX_AGE_SECONDS) -> int:
        """Cancel and forget operations older than max_age seconds.

        Catches operations whose completion handler never ran, so their
        tokens and progress mappings do not accumulate.

        Args:
            max_age: Age threshold in seconds.

        Returns:
            Number of operations swept.
        """
        now = monotonic()
        swept = 0

        for operation_id, context in list(self._requests.items()):
            age = context.age(now)
            if age <= max_age:
                continue

            self.logger.warn(
                "REQUEST_STALE",
                "Cleaning up stale request",
                {
                    "requestId": operation_id,
                    "age_ms": round(age * 1000),
                    "maxAge_ms": round(max_age * 1000),
                    "toolName": context.operation_name,
                },
            )
            context.cancellation.cancel(CANCEL_REASON_TIMED_OUT)
            self.cleanup(operation_id)
            swept += 1

        if swept:
            self.logger.info(
                "STALE_CLEANUP_COMPLETE",
                "Cleaned up stale requests",
                {"cleanedCount": swept, "remainingRequests": len(self._requests)},
            )
        return swept

    def shutdown_all(self) -> None:
        """Cancel every tracked operation and clear all state."""
        self.logger.info(
            "REQUEST_TRACKER_SHUTDOWN",
            "Shutting down request tracker",
            {"activeRequests": len(self._requests)},
        )

        for context in self._requests.values():
            context.cancellation.cancel(CANCEL_REASON_SHUTDOWN)

        self._requests.clear()
        self._progress_tokens.clear()
