"""Runtime assembly: builds and owns every lifecycle and telemetry component.

One RelayRuntime exists per server instance. Nothing is module-global, so
several runtimes (e.g., in tests) never share state.

Usage:
    sink = SessionNotificationSink()
    runtime = RelayRuntime.from_config(load_config_from_env(), sink)
    await runtime.start()
    ...
    await runtime.shutdown()
"""

from __future__ import annotations

__all__ = ["RelayRuntime"]

import traceback
from typing import Any, Awaitable, Callable

from mcp_relay.config import RelayConfig
from mcp_relay.lifecycle.middleware import LifecycleMiddleware, SessionNotificationSink
from mcp_relay.lifecycle.progress_reporter import NotificationSink, ProgressReporter
from mcp_relay.lifecycle.request_tracker import RequestTracker
from mcp_relay.lifecycle.sweeper import LifecycleSweeper
from mcp_relay.telemetry.shipping.log_batcher import LogBatcher
from mcp_relay.telemetry.shipping.log_shipper import LogShipper
from mcp_relay.telemetry.structured_logger import StructuredLogger
from mcp_relay.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


class RelayRuntime:
    """Shipper, structured logger, tracker, reporter and sweeper for one server."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        shipper: LogShipper,
        logger: StructuredLogger,
        tracker: RequestTracker,
        reporter: ProgressReporter,
        sweeper: LifecycleSweeper,
    ) -> None:
        self.config = config
        self.shipper = shipper
        self.logger = logger
        self.tracker = tracker
        self.reporter = reporter
        self.sweeper = sweeper
        self._started = False
        self._shut_down = False

    @classmethod
    def from_config(cls, config: RelayConfig, sink: NotificationSink) -> "RelayRuntime":
        """Build all components from validated configuration.

        Args:
            config: Validated relay configuration.
            sink: Where progress notifications are delivered.

        Returns:
            Runtime with components wired but periodic tasks not yet started
            (unless constructed inside a running loop).

        Raises:
            ConfigurationError: If log shipping is enabled but misconfigured.
        """
        shipping = config.log_shipping
        shipper = LogShipper(shipping)

        batcher: LogBatcher | None = None
        if shipping.enabled:
            batcher = LogBatcher(
                shipper,
                max_batch_size=shipping.batcher_batch_size,
                flush_interval=shipping.batcher_flush_interval,
            )

        logger = StructuredLogger(
            component="server",
            log_level=shipping.log_level,
            server_name=config.server_name,
            user=config.user,
            integration=config.integration,
            project_id=config.project_id,
            organization_id=config.organization_id,
            batcher=batcher,
        )
        tracker = RequestTracker(logger)
        reporter = ProgressReporter(sink, logger, tracker)
        sweeper = LifecycleSweeper(
            tracker,
            reporter,
            sweep_interval=config.lifecycle.sweep_interval,
            stale_max_age=config.lifecycle.stale_max_age,
        )

        logger.info(
            "SERVER_INIT",
            "MCP server initializing",
            {
                "serverName": config.server_name,
                "logShippingEnabled": shipping.enabled,
                "logLevel": shipping.log_level,
            },
        )

        return cls(
            config,
            shipper=shipper,
            logger=logger,
            tracker=tracker,
            reporter=reporter,
            sweeper=sweeper,
        )

    def create_middleware(self) -> LifecycleMiddleware:
        """Create the FastMCP middleware bound to this runtime's components."""
        sink = self.reporter.sink
        return LifecycleMiddleware(
            self.tracker,
            self.reporter,
            self.logger,
            sessions=sink if isinstance(sink, SessionNotificationSink) else None,
        )

    async def start(self) -> None:
        """Start every periodic task. Must be called inside the event loop."""
        if self._started:
            return
        self._started = True

        self.shipper.start()
        self.logger.start()
        await self.sweeper.start()

        self.logger.info(
            "SERVER_START",
            "MCP server started successfully",
            {"serverName": self.config.server_name, "transport": "stdio"},
        )

    async def shutdown(self) -> None:
        """Stop everything, in dependency order, each step best-effort.

        Order: sweeper, tracker (cancels in-flight operations), reporter,
        structured logger with its batcher, then the shipper's final flush.
        """
        if self._shut_down:
            return
        self._shut_down = True

        self.logger.info(
            "SERVER_SHUTDOWN",
            "MCP server shutting down",
            {"serverName": self.config.server_name},
        )

        await self._best_effort("sweeper", self.sweeper.stop)
        await self._best_effort("request_tracker", self.tracker.shutdown_all)
        await self._best_effort("progress_reporter", self.reporter.shutdown)
        await self._best_effort("structured_logger", self.logger.shutdown)
        await self._best_effort("log_shipper", self.shipper.shutdown)

    def get_status(self) -> dict[str, Any]:
        return {
            "active_requests": self.tracker.active_count,
            "progress": self.reporter.get_stats(),
            "sweeper_running": self.sweeper.is_running,
            "logger": self.logger.get_status(),
            "shipper": self.shipper.get_health_status(),
        }

    @staticmethod
    async def _best_effort(component: str, step: Callable[[], Awaitable[None] | None]) -> None:
        try:
            result = step()
            if result is not None:
                await result
        except Exception as e:
            _system_logger.error(
                {
                    "event": "component_shutdown_failed",
                    "component": component,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "traceback": traceback.format_exc(),
                }
            )
