"""Progress reporter: validated, rate-limited progress notifications.

For each progress token the reporter remembers the last accepted value and
when it was sent. An update is emitted only if the token's operation is still
active, the value is strictly greater than the last one, and at least
MIN_PROGRESS_INTERVAL_SECONDS have passed since the last emission. Everything
else is dropped with a diagnostic entry, never raised.

Usage:
    reporter = ProgressReporter(sink, logger, tracker)
    await reporter.report("tok-1", ProgressUpdate(50, total=100))
    await reporter.report_batch("tok-1", processed=30, total=120, item_type="pages")
"""

from __future__ import annotations

__all__ = [
    "NotificationSink",
    "PercentageCallback",
    "ProgressCallback",
    "ProgressReporter",
    "ProgressState",
    "ProgressUpdate",
]

from dataclasses import dataclass
from time import monotonic
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from mcp_relay.constants import MIN_PROGRESS_INTERVAL_SECONDS, PROGRESS_NOTIFICATION_METHOD
from mcp_relay.lifecycle.request_tracker import ProgressToken, RequestTracker

if TYPE_CHECKING:
    from mcp_relay.telemetry.structured_logger import StructuredLogger


class NotificationSink(Protocol):
    """Anything that can deliver a JSON-RPC notification to the client."""

    async def send_notification(self, notification: dict[str, Any]) -> None: ...


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    progress: float
    total: float | None = None
    message: str | None = None


@dataclass(slots=True)
class ProgressState:
    """Last accepted update for one progress token."""

    last_progress: float
    last_update_time: float
    update_count: int


ProgressCallback = Callable[[ProgressUpdate], Awaitable[None]]
PercentageCallback = Callable[..., Awaitable[None]]


class ProgressReporter:
    """Emits progress notifications for tracked operations."""

    def __init__(
        self,
        sink: NotificationSink,
        logger: "StructuredLogger",
        tracker: RequestTracker,
        min_update_interval: float = MIN_PROGRESS_INTERVAL_SECONDS,
    ) -> None:
        self.sink = sink
        self.logger = logger
        self.tracker = tracker
        self.min_update_interval = min_update_interval
        self._states: dict[ProgressToken, ProgressState] = {}

    @property
    def active_count(self) -> int:
        return len(self._states)

    async def report(self, progress_token: ProgressToken, update: ProgressUpdate) -> None:
        """Emit a progress notification if the update passes validation.

        Args:
            progress_token: Channel the update belongs to.
            update: New progress value, optional total and message.
        """
        if not self.tracker.is_progress_token_active(progress_token):
            self.logger.debug(
                "PROGRESS_TOKEN_INACTIVE",
                "Progress token no longer active",
                {"progressToken": progress_token, "progress": update.progress},
            )
            return

        state = self._states.get(progress_token)
        now = monotonic()

        if state is not None and update.progress <= state.last_progress:
            self.logger.warn(
                "PROGRESS_NOT_INCREASING",
                "Progress value must increase",
                {
                    "progressToken": progress_token,
                    "lastProgress": state.last_progress,
                    "newProgress": update.progress,
                },
            )
            return

        if state is not None and now - state.last_update_time < self.min_update_interval:
            self.logger.debug(
                "PROGRESS_RATE_LIMITED",
                "Progress update rate limited",
                {
                    "progressToken": progress_token,
                    "timeSinceLastUpdate_ms": round((now - state.last_update_time) * 1000),
                    "minInterval_ms": round(self.min_update_interval * 1000),
                },
            )
            return

        params: dict[str, Any] = {"progressToken": progress_token, "progress": update.progress}
        if update.total is not None:
            params["total"] = update.total
        if update.message is not None:
            params["message"] = update.message

        try:
            await self.sink.send_notification({"method": PROGRESS_NOTIFICATION_METHOD, "params": params})
        except Exception as e:
            self.logger.error(
                "PROGRESS_REPORT_ERROR",
                "Failed to send progress notification",
                {"progressToken": progress_token, "error": str(e)},
            )
            return

        update_count = (state.update_count if state is not None else 0) + 1
        self._states[progress_token] = ProgressState(
            last_progress=update.progress,
            last_update_time=now,
            update_count=update_count,
        )

        context = self.tracker.get_by_progress_token(progress_token)
        self.logger.info(
            "PROGRESS_REPORTED",
            "Progress notification sent",
            {
                "progressToken": progress_token,
                "progress": update.progress,
                "total": update.total,
                "hasMessage": update.message is not None,
                "updateCount": update_count,
                "requestId": context.operation_id if context else None,
                "toolName": context.operation_name if context else None,
            },
        )

        if update.total is not None and update.progress >= update.total:
            self.cleanup(progress_token)

    async def report_percentage(
        self,
        progress_token: ProgressToken,
        percentage: float,
        message: str | None = None,
    ) -> None:
        """Report progress as a percentage in [0, 100]."""
        if not 0 <= percentage <= 100:
            self.logger.warn(
                "PROGRESS_PERCENTAGE_INVALID",
                "Invalid percentage value",
                {"progressToken": progress_token, "percentage": percentage},
            )
            return

        await self.report(progress_token, ProgressUpdate(percentage, total=100, message=message))

    async def report_step(
        self,
        progress_token: ProgressToken,
        current_step: int,
        total_steps: int,
        message: str | None = None,
    ) -> None:
        await self.report(progress_token, ProgressUpdate(current_step, total=total_steps, message=message))

    async def report_batch(
        self,
        progress_token: ProgressToken,
        processed: int,
        total: int,
        item_type: str = "items",
    ) -> None:
        """Report progress through a batch of items with a readable message."""
        percentage = round(processed / total * 100) if total else 0
        await self.report(
            progress_token,
            ProgressUpdate(
                processed,
                total=total,
                message=f"Processed {processed} of {total} {item_type} ({percentage}%)",
            ),
        )

    def cleanup(self, progress_token: ProgressToken) -> None:
        state = self._states.pop(progress_token, None)
        if state is not None:
            self.logger.debug(
                "PROGRESS_CLEANUP",
                "Cleaning up progress state",
                {
                    "progressToken": progress_token,
                    "finalProgress": state.last_progress,
                    "totalUpdates": state.update_count,
                },
            )

    def cleanup_completed_requests(self) -> int:
        """Drop state for tokens whose operation is no longer active.

        Returns:
            Number of states removed.
        """
        inactive = [token for token in self._states if not self.tracker.is_progress_token_active(token)]
        for token in inactive:
            del self._states[token]

        if inactive:
            self.logger.info(
                "PROGRESS_CLEANUP_COMPLETED",
                "Cleaned up inactive progress states",
                {"cleanedCount": len(inactive), "remainingStates": len(self._states)},
            )
        return len(inactive)

    def create_progress_callback(self, progress_token: ProgressToken) -> ProgressCallback:
        """Bind report() to one token for handing into long-running work."""

        async def callback(update: ProgressUpdate) -> None:
            await self.report(progress_token, update)

        return callback

    def create_percentage_callback(self, progress_token: ProgressToken) -> PercentageCallback:
        async def callback(percentage: float, message: str | None = None) -> None:
            await self.report_percentage(progress_token, percentage, message)

        return callback

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_progress_tokens": len(self._states),
            "progress_states": [
                {
                    "token": token,
                    "last_progress": state.last_progress,
                    "update_count": state.update_count,
                }
                for token, state in self._states.items()
            ],
        }

    def shutdown(self) -> None:
        self.logger.info(
            "PROGRESS_REPORTER_SHUTDOWN",
            "Shutting down progress reporter",
            {"activeStates": len(self._states)},
        )
        self._states.clear()
