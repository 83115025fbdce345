"""Request lifecycle: tracking, cancellation and progress for tool calls."""

from mcp_relay.lifecycle.cancellation import CancellationToken
from mcp_relay.lifecycle.dispatch import OperationHandle, run_tracked_operation
from mcp_relay.lifecycle.middleware import (
    LifecycleMiddleware,
    SessionNotificationSink,
    get_current_operation,
    handle_cancelled_notification,
)
from mcp_relay.lifecycle.progress_reporter import (
    NotificationSink,
    ProgressReporter,
    ProgressState,
    ProgressUpdate,
)
from mcp_relay.lifecycle.request_tracker import OperationContext, RequestTracker
from mcp_relay.lifecycle.sweeper import LifecycleSweeper, SweepResult

__all__ = [
    "CancellationToken",
    "LifecycleMiddleware",
    "LifecycleSweeper",
    "NotificationSink",
    "OperationContext",
    "OperationHandle",
    "ProgressReporter",
    "ProgressState",
    "ProgressUpdate",
    "RequestTracker",
    "SessionNotificationSink",
    "SweepResult",
    "get_current_operation",
    "handle_cancelled_notification",
    "run_tracked_operation",
]
