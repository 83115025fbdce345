"""Periodic lifecycle sweep.

Tool calls whose completion handler never ran would otherwise keep their
tracker entry and progress state forever. The sweeper wakes every
`sweep_interval` seconds, cancels operations older than `stale_max_age`, and
drops progress state whose operation is gone.

A failing sweep is logged and the loop keeps running; nothing here may take
the server down.
"""

from __future__ import annotations

__all__ = ["LifecycleSweeper", "SweepResult"]

import asyncio
import traceback
from typing import NamedTuple

from mcp_relay.constants import DEFAULT_STALE_MAX_AGE_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS
from mcp_relay.lifecycle.progress_reporter import ProgressReporter
from mcp_relay.lifecycle.request_tracker import RequestTracker
from mcp_relay.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


class SweepResult(NamedTuple):
    stale_requests: int
    orphaned_progress_states: int


class LifecycleSweeper:
    """Background task driving RequestTracker and ProgressReporter cleanup."""

    def __init__(
        self,
        tracker: RequestTracker,
        reporter: ProgressReporter,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        stale_max_age: float = DEFAULT_STALE_MAX_AGE_SECONDS,
    ) -> None:
        """Initialize the sweeper.

        Args:
            tracker: Tracker to sweep for stale operations.
            reporter: Reporter to sweep for orphaned progress state.
            sweep_interval: Seconds between sweeps (default 60).
            stale_max_age: Age in seconds after which an operation is stale (default 300).
        """
        self.tracker = tracker
        self.reporter = reporter
        self.sweep_interval = sweep_interval
        self.stale_max_age = stale_max_age

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._sweep_count = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def sweep_count(self) -> int:
        return self._sweep_count

    async def start(self) -> None:
        """Start the sweep loop, replacing any previous one."""
        if self._task is not None and not self._task.done():
            await self.stop()

        self._running = True
        self._task = asyncio.create_task(
            self._sweep_loop(),
            name="lifecycle_sweeper",
        )

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        task, self._task = self._task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def sweep_once(self) -> SweepResult:
        """Run one sweep immediately.

        Returns:
            How many stale operations and orphaned progress states were removed.
        """
        stale = self.tracker.sweep_stale(self.stale_max_age)
        orphaned = self.reporter.cleanup_completed_requests()
        self._sweep_count += 1
        return SweepResult(stale, orphaned)

    async def _sweep_loop(self) -> None:
        """Periodic sweep loop."""
        try:
            while self._running:
                await asyncio.sleep(self.sweep_interval)

                if not self._running:
                    break

                try:
                    self.sweep_once()
                except Exception as e:
                    _system_logger.error(
                        {
                            "event": "lifecycle_sweep_failed",
                            "error": str(e),
                            "error_type": type(e).__name__,
                            "traceback": traceback.format_exc(),
                        }
                    )
        finally:
            self._running = False
