"""FastMCP wiring for request tracking, progress and cancellation.

LifecycleMiddleware wraps every tools/call in run_tracked_operation, so the
tool implementation can reach its OperationHandle through
get_current_operation() and report progress against the request's
_meta.progressToken. Inbound notifications/cancelled are routed to the
tracker.

SessionNotificationSink delivers progress notifications on the MCP session
that issued the request owning the progress token.

Middleware order: Lifecycle (outer) -> tool handlers (inner)
"""

from __future__ import annotations

__all__ = [
    "LifecycleMiddleware",
    "SessionNotificationSink",
    "current_operation_var",
    "get_current_operation",
    "handle_cancelled_notification",
]

from contextvars import ContextVar
from time import monotonic
from typing import TYPE_CHECKING, Any, Mapping

from fastmcp.server.middleware import Middleware
from fastmcp.server.middleware.middleware import CallNext, MiddlewareContext

from mcp_relay.constants import CANCELLED_NOTIFICATION_METHOD, UNKNOWN_VALUE
from mcp_relay.lifecycle.dispatch import OperationHandle, run_tracked_operation
from mcp_relay.lifecycle.progress_reporter import ProgressReporter
from mcp_relay.lifecycle.request_tracker import OperationId, ProgressToken, RequestTracker
from mcp_relay.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from mcp.server.session import ServerSession

    from mcp_relay.telemetry.structured_logger import StructuredLogger

_system_logger = get_system_logger()

# Handle of the tools/call currently executing in this task
current_operation_var: ContextVar[OperationHandle | None] = ContextVar("current_operation", default=None)


def _elapsed_ms(started: float) -> float:
    return round((monotonic() - started) * 1000, 1)


def get_current_operation() -> OperationHandle | None:
    """Get the OperationHandle of the tool call being executed.

    Returns:
        OperationHandle | None: Handle if called from inside a tracked tools/call.
    """
    return current_operation_var.get()


def handle_cancelled_notification(
    tracker: RequestTracker,
    logger: "StructuredLogger",
    request_id: OperationId,
    reason: str | None = None,
) -> bool:
    """Apply an inbound notifications/cancelled to the tracker.

    Args:
        tracker: Registry holding the operation.
        logger: Structured logger for the lifecycle events.
        request_id: Id of the request the client wants cancelled.
        reason: Optional reason supplied by the client.

    Returns:
        True if an active operation was cancelled.
    """
    logger.info(
        "CANCELLATION_RECEIVED",
        "Received cancellation notification",
        {"requestId": request_id, "reason": reason},
    )

    cancelled = tracker.cancel(request_id, reason)
    if not cancelled:
        logger.debug(
            "CANCELLATION_IGNORED",
            "Cancellation ignored - request not found or already completed",
            {"requestId": request_id},
        )
    return cancelled


class SessionNotificationSink:
    """Routes progress notifications to the session owning each progress token.

    The middleware binds a token to its session when the tool call starts and
    releases it when the call ends.
    """

    def __init__(self) -> None:
        self._sessions: dict[ProgressToken, "ServerSession"] = {}

    def bind(self, progress_token: ProgressToken, session: "ServerSession") -> None:
        self._sessions[progress_token] = session

    def release(self, progress_token: ProgressToken) -> None:
        self._sessions.pop(progress_token, None)

    @property
    def bound_count(self) -> int:
        return len(self._sessions)

    async def send_notification(self, notification: dict[str, Any]) -> None:
        """Send a notifications/progress message on the owning session.

        Raises:
            LookupError: No session is bound to the notification's token.
        """
        params = notification["params"]
        progress_token = params["progressToken"]

        session = self._sessions.get(progress_token)
        if session is None:
            raise LookupError(f"No session bound to progress token {progress_token!r}")

        await session.send_progress_notification(
            progress_token=progress_token,
            progress=params["progress"],
            total=params.get("total"),
            message=params.get("message"),
        )


class LifecycleMiddleware(Middleware):
    """Outermost middleware tracking tool calls and applying cancellations."""

    def __init__(
        self,
        tracker: RequestTracker,
        reporter: ProgressReporter,
        logger: "StructuredLogger",
        sessions: SessionNotificationSink | None = None,
    ) -> None:
        """Initialize lifecycle middleware.

        Args:
            tracker: Registry for in-flight tool calls.
            reporter: Progress reporter the tool handles report through.
            logger: Structured logger for lifecycle events.
            sessions: Sink to bind progress tokens to their sessions, if the
                reporter delivers through one.
        """
        self.tracker = tracker
        self.reporter = reporter
        self.logger = logger
        self.sessions = sessions

    async def on_message(
        self,
        context: MiddlewareContext[Any],
        call_next: CallNext[Any],
    ) -> Any:
        """Track tools/call requests and route cancellation notifications.

        Args:
            context: Middleware context containing the message.
            call_next: Next middleware in chain.

        Returns:
            Response from downstream middleware/handler.
        """
        if context.method == CANCELLED_NOTIFICATION_METHOD:
            self._on_cancelled(context)
            return await call_next(context)

        if context.method != "tools/call":
            return await call_next(context)

        request_id = self._request_id(context)
        if request_id is None:
            _system_logger.warning(
                {
                    "event": "tool_call_untracked",
                    "reason": "no request id in context",
                    "message_type": type(context.message).__name__,
                }
            )
            return await call_next(context)

        progress_token = self._progress_token(context)
        tool_name = getattr(context.message, "name", None)

        session = self._session(context)
        if progress_token is not None and session is not None and self.sessions is not None:
            self.sessions.bind(progress_token, session)

        arguments = getattr(context.message, "arguments", None)
        logged_name = tool_name or UNKNOWN_VALUE

        async def work(handle: OperationHandle) -> Any:
            token = current_operation_var.set(handle)
            started = monotonic()
            self.logger.log_tool_start(logged_name, arguments if isinstance(arguments, Mapping) else None)
            try:
                result = await call_next(context)
            except Exception as e:
                self.logger.log_tool_error(logged_name, e, _elapsed_ms(started))
                raise
            else:
                self.logger.log_tool_success(logged_name, _elapsed_ms(started))
                return result
            finally:
                current_operation_var.reset(token)

        try:
            return await run_tracked_operation(
                self.tracker,
                self.reporter,
                request_id,
                work,
                progress_token=progress_token,
                operation_name=tool_name,
                logger=self.logger,
            )
        finally:
            if progress_token is not None and self.sessions is not None:
                self.sessions.release(progress_token)

    def _on_cancelled(self, context: MiddlewareContext[Any]) -> None:
        message = context.message
        request_id = getattr(message, "requestId", None)
        if request_id is None:
            _system_logger.warning(
                {
                    "event": "cancellation_missing_request_id",
                    "message_type": type(message).__name__,
                }
            )
            return
        # Tool calls are tracked under FastMCP's string request id
        handle_cancelled_notification(
            self.tracker,
            self.logger,
            str(request_id),
            getattr(message, "reason", None),
        )

    @staticmethod
    def _request_id(context: MiddlewareContext[Any]) -> str | None:
        # fastmcp_context may not be available during early connection phase
        try:
            if context.fastmcp_context is not None:
                return context.fastmcp_context.request_id
        except (AttributeError, RuntimeError):
            pass
        return None

    @staticmethod
    def _session(context: MiddlewareContext[Any]) -> "ServerSession | None":
        try:
            if context.fastmcp_context is not None:
                return context.fastmcp_context.session
        except (AttributeError, RuntimeError):
            pass
        return None

    @staticmethod
    def _progress_token(context: MiddlewareContext[Any]) -> ProgressToken | None:
        # In FastMCP, context.message IS the params object (CallToolRequestParams)
        meta = getattr(context.message, "meta", None)
        if meta is None:
            return None
        return getattr(meta, "progressToken", None)
