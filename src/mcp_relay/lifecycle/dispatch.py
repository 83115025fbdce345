"""Tracked execution of one tool call.

Wraps a unit of work in the register / run / cleanup sequence so the tracker
and reporter never leak state, whatever way the work ends.

Usage:
    async def work(handle: OperationHandle) -> dict:
        for index, page in enumerate(pages):
            handle.cancellation.raise_if_cancelled()
            await handle.report(ProgressUpdate(index, total=len(pages)))
            ...
        return result

    result = await run_tracked_operation(tracker, reporter, request_id, work, progress_token="tok-1")
"""

from __future__ import annotations

__all__ = [
    "OperationHandle",
    "run_tracked_operation",
]

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from mcp_relay.constants import CANCEL_REASON_CLIENT_ABORTED
from mcp_relay.exceptions import OperationCancelledError
from mcp_relay.lifecycle.cancellation import CancellationToken
from mcp_relay.lifecycle.progress_reporter import (
    PercentageCallback,
    ProgressCallback,
    ProgressReporter,
    ProgressUpdate,
)
from mcp_relay.lifecycle.request_tracker import (
    OperationContext,
    OperationId,
    ProgressToken,
    RequestTracker,
)

if TYPE_CHECKING:
    from mcp_relay.telemetry.structured_logger import StructuredLogger

T = TypeVar("T")


async def _ignore_progress(update: ProgressUpdate) -> None:
    return None


async def _ignore_percentage(percentage: float, message: str | None = None) -> None:
    return None


@dataclass(frozen=True, slots=True)
class OperationHandle:
    """What a running tool gets to observe cancellation and report progress.

    When the caller supplied no progress token, both callbacks are no-ops.
    """

    context: OperationContext
    report: ProgressCallback
    report_percentage: PercentageCallback

    @property
    def cancellation(self) -> CancellationToken:
        return self.context.cancellation

    @property
    def operation_id(self) -> OperationId:
        return self.context.operation_id

    @property
    def progress_token(self) -> ProgressToken | None:
        return self.context.progress_token

    @classmethod
    def for_context(cls, context: OperationContext, reporter: ProgressReporter) -> "OperationHandle":
        if context.progress_token is None:
            return cls(context, _ignore_progress, _ignore_percentage)
        return cls(
            context,
            reporter.create_progress_callback(context.progress_token),
            reporter.create_percentage_callback(context.progress_token),
        )


async def run_tracked_operation(
    tracker: RequestTracker,
    reporter: ProgressReporter,
    operation_id: OperationId,
    work: Callable[[OperationHandle], Awaitable[T]],
    *,
    progress_token: ProgressToken | None = None,
    operation_name: str | None = None,
    logger: "StructuredLogger | None" = None,
) -> T:
    """Register an operation, run its work, and always clean up after it.

    Args:
        tracker: Registry the operation is tracked in.
        reporter: Reporter for the operation's progress channel.
        operation_id: Unique id (MCP request id).
        work: Coroutine function receiving the OperationHandle.
        progress_token: Optional progress channel from the request's _meta.
        operation_name: Tool name, for diagnostics.
        logger: Where to record aborted operations (defaults to tracker.logger).

    Returns:
        Whatever work returned.

    Raises:
        OperationCancelledError: The operation was cancelled while running,
            whether the work then failed or returned normally.
    """
    logger = logger or tracker.logger
    # A duplicate id shares the live context but leaves its teardown to the owner
    owns_context = tracker.get(operation_id) is None
    context = tracker.register(operation_id, progress_token, operation_name)
    handle = OperationHandle.for_context(context, reporter)

    try:
        try:
            result = await work(handle)
        except asyncio.CancelledError:
            # The session cancelled the handler task; flip the token for any
            # work still holding it
            if owns_context:
                tracker.cancel(operation_id, CANCEL_REASON_CLIENT_ABORTED)
            raise
        except OperationCancelledError:
            raise
        except Exception as e:
            if context.cancelled:
                _log_aborted(logger, context)
                raise OperationCancelledError(
                    operation_id, context.cancellation.reason, operation_name=operation_name
                ) from e
            raise

        # Work that ignored its token still finished; the caller asked it to stop
        if context.cancelled:
            _log_aborted(logger, context)
            raise OperationCancelledError(operation_id, context.cancellation.reason, operation_name=operation_name)
        return result
    finally:
        if owns_context:
            if tracker.get(operation_id) is context:
                tracker.cleanup(operation_id)
            if progress_token is not None:
                reporter.cleanup(progress_token)


def _log_aborted(logger: "StructuredLogger", context: OperationContext) -> None:
    logger.info(
        "REQUEST_ABORTED",
        "Request was cancelled",
        {
            "requestId": context.operation_id,
            "toolName": context.operation_name,
            "reason": context.cancellation.reason,
        },
    )
