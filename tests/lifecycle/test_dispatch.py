"""Unit tests for run_tracked_operation and OperationHandle.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from mcp_relay.exceptions import OPERATION_CANCELLED_CODE, OperationCancelledError
from mcp_relay.lifecycle.dispatch import OperationHandle, run_tracked_operation
from mcp_relay.lifecycle.progress_reporter import ProgressReporter, ProgressUpdate
from mcp_relay.lifecycle.request_tracker import RequestTracker


def _actions(mock_logger: MagicMock, level: str) -> list[str]:
    return [c.args[0] for c in getattr(mock_logger, level).call_args_list]


class TestSuccess:
    """Work that completes normally."""

    @pytest.mark.asyncio
    async def test_returns_result_and_cleans_up(self, tracker: RequestTracker, reporter: ProgressReporter) -> None:
        """The result is returned and no tracking state remains."""

        # Arrange
        async def work(handle: OperationHandle) -> str:
            assert tracker.is_active("req-1")
            return "done"

        # Act
        result = await run_tracked_operation(tracker, reporter, "req-1", work, progress_token="tok-1")

        # Assert
        assert result == "done"
        assert tracker.active_count == 0
        assert reporter.active_count == 0

    @pytest.mark.asyncio
    async def test_handle_reports_progress(
        self, tracker: RequestTracker, reporter: ProgressReporter, sink
    ) -> None:
        """The handle's report callback is bound to the request's progress token."""

        # Arrange
        async def work(handle: OperationHandle) -> None:
            assert handle.operation_id == "req-1"
            assert handle.progress_token == "tok-1"
            await handle.report(ProgressUpdate(1, total=2))

        # Act
        with patch("mcp_relay.lifecycle.progress_reporter.monotonic", return_value=0.0):
            await run_tracked_operation(tracker, reporter, "req-1", work, progress_token="tok-1")

        # Assert
        assert sink.progress_values == [1]

    @pytest.mark.asyncio
    async def test_without_progress_token_callbacks_are_noops(
        self, tracker: RequestTracker, reporter: ProgressReporter, sink
    ) -> None:
        """Without a progress token reports are silently ignored."""

        # Arrange
        async def work(handle: OperationHandle) -> None:
            await handle.report(ProgressUpdate(1))
            await handle.report_percentage(50)

        # Act
        await run_tracked_operation(tracker, reporter, "req-1", work)

        # Assert
        assert sink.notifications == []


class TestFailures:
    """Work that raises or is cancelled."""

    @pytest.mark.asyncio
    async def test_uncancelled_error_propagates_unchanged(
        self, tracker: RequestTracker, reporter: ProgressReporter
    ) -> None:
        """A plain failure is re-raised as-is and state is cleaned up."""

        # Arrange
        async def work(handle: OperationHandle) -> None:
            raise ValueError("boom")

        # Act & Assert
        with pytest.raises(ValueError, match="boom"):
            await run_tracked_operation(tracker, reporter, "req-1", work, progress_token="tok-1")
        assert tracker.active_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_then_failed_is_reported_as_cancelled(
        self, tracker: RequestTracker, reporter: ProgressReporter, mock_logger: MagicMock
    ) -> None:
        """An error raised after cancellation becomes OperationCancelledError."""

        # Arrange
        async def work(handle: OperationHandle) -> None:
            tracker.cancel("req-1", "User pressed stop")
            raise RuntimeError("aborted fetch")

        # Act
        with pytest.raises(OperationCancelledError) as exc_info:
            await run_tracked_operation(tracker, reporter, "req-1", work, operation_name="search_pages")

        # Assert
        error = exc_info.value
        assert error.reason == "User pressed stop"
        assert error.operation_id == "req-1"
        assert error.error.code == OPERATION_CANCELLED_CODE
        assert isinstance(error.__cause__, RuntimeError)
        assert "REQUEST_ABORTED" in _actions(mock_logger, "info")

    @pytest.mark.asyncio
    async def test_cancelled_then_returned_is_reported_as_cancelled(
        self, tracker: RequestTracker, reporter: ProgressReporter
    ) -> None:
        """Work that ignores its token still ends as cancelled."""

        # Arrange
        async def work(handle: OperationHandle) -> str:
            tracker.cancel("req-1", "stop")
            return "late result"

        # Act & Assert
        with pytest.raises(OperationCancelledError, match="stop"):
            await run_tracked_operation(tracker, reporter, "req-1", work)

    @pytest.mark.asyncio
    async def test_raise_if_cancelled_passes_through(
        self, tracker: RequestTracker, reporter: ProgressReporter
    ) -> None:
        """Work checking its token raises the cancellation directly."""

        # Arrange
        async def work(handle: OperationHandle) -> None:
            tracker.cancel("req-1", "stop")
            handle.cancellation.raise_if_cancelled()

        # Act & Assert
        with pytest.raises(OperationCancelledError) as exc_info:
            await run_tracked_operation(tracker, reporter, "req-1", work)
        assert exc_info.value.__cause__ is None

    @pytest.mark.asyncio
    async def test_task_cancellation_flips_token(
        self, tracker: RequestTracker, reporter: ProgressReporter
    ) -> None:
        """Cancelling the handler task cancels the operation's token."""
        # Arrange
        started = asyncio.Event()
        seen: list[OperationHandle] = []

        async def work(handle: OperationHandle) -> None:
            seen.append(handle)
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(run_tracked_operation(tracker, reporter, "req-1", work))
        await started.wait()

        # Act
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # Assert
        assert seen[0].cancellation.cancelled is True
        assert seen[0].cancellation.reason == "Request cancelled by client"
        assert tracker.active_count == 0


class TestDuplicateIds:
    """A second call reusing a live request id."""

    @pytest.mark.asyncio
    async def test_duplicate_does_not_untrack_first_call(
        self, tracker: RequestTracker, reporter: ProgressReporter
    ) -> None:
        """When the duplicate finishes, the first call stays tracked and cancellable."""
        # Arrange
        started = asyncio.Event()
        release = asyncio.Event()

        async def long_work(handle: OperationHandle) -> str:
            started.set()
            await release.wait()
            return "first"

        async def short_work(handle: OperationHandle) -> str:
            return "second"

        first = asyncio.create_task(
            run_tracked_operation(tracker, reporter, "req-1", long_work, progress_token="tok-1")
        )
        await started.wait()

        # Act
        second_result = await run_tracked_operation(tracker, reporter, "req-1", short_work)

        # Assert
        assert second_result == "second"
        assert tracker.is_active("req-1")
        assert tracker.cancel("req-1", "stop") is True
        release.set()
        with pytest.raises(OperationCancelledError):
            await first
        assert tracker.active_count == 0
