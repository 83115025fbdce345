"""Unit tests for ProgressReporter.

Time is controlled by patching the module's monotonic clock; the sink
records notifications instead of sending them.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from mcp_relay.lifecycle.progress_reporter import ProgressReporter, ProgressUpdate
from mcp_relay.lifecycle.request_tracker import RequestTracker


def _actions(mock_logger: MagicMock, level: str) -> list[str]:
    return [c.args[0] for c in getattr(mock_logger, level).call_args_list]


@pytest.fixture
def clock() -> Iterator[MagicMock]:
    """Patched monotonic clock for the reporter, starting at 0."""
    with patch("mcp_relay.lifecycle.progress_reporter.monotonic", return_value=0.0) as mock_clock:
        yield mock_clock


@pytest.fixture
def active(tracker: RequestTracker) -> str:
    """Register req-1 with progress token tok-1."""
    tracker.register("req-1", "tok-1", "search_pages")
    return "tok-1"


class TestReport:
    """report() validation and emission."""

    @pytest.mark.asyncio
    async def test_emits_notification(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """An accepted update becomes a notifications/progress message."""
        # Act
        await reporter.report(active, ProgressUpdate(10, total=100, message="Fetching"))

        # Assert
        assert sink.notifications == [
            {
                "method": "notifications/progress",
                "params": {"progressToken": "tok-1", "progress": 10, "total": 100, "message": "Fetching"},
            }
        ]

    @pytest.mark.asyncio
    async def test_omits_absent_total_and_message(
        self, reporter: ProgressReporter, sink, active: str, clock
    ) -> None:
        """total and message are left out when not given."""
        # Act
        await reporter.report(active, ProgressUpdate(1))

        # Assert
        assert sink.notifications[0]["params"] == {"progressToken": "tok-1", "progress": 1}

    @pytest.mark.asyncio
    async def test_keeps_empty_message(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """An empty message is sent as given, not dropped."""
        # Act
        await reporter.report(active, ProgressUpdate(1, message=""))

        # Assert
        assert sink.notifications[0]["params"] == {"progressToken": "tok-1", "progress": 1, "message": ""}

    @pytest.mark.asyncio
    async def test_inactive_token_is_dropped(
        self, reporter: ProgressReporter, sink, mock_logger: MagicMock, clock
    ) -> None:
        """Updates for unknown tokens are never sent."""
        # Act
        await reporter.report("tok-unknown", ProgressUpdate(1))

        # Assert
        assert sink.notifications == []
        assert "PROGRESS_TOKEN_INACTIVE" in _actions(mock_logger, "debug")

    @pytest.mark.asyncio
    async def test_cancelled_operation_is_dropped(
        self, reporter: ProgressReporter, sink, tracker: RequestTracker, active: str, clock
    ) -> None:
        """Once the operation is cancelled its token is inactive."""
        # Arrange
        tracker.cancel("req-1", "stop")

        # Act
        await reporter.report(active, ProgressUpdate(1))

        # Assert
        assert sink.notifications == []

    @pytest.mark.asyncio
    async def test_non_increasing_progress_is_dropped(
        self, reporter: ProgressReporter, sink, mock_logger: MagicMock, active: str, clock
    ) -> None:
        """Equal or lower progress values are rejected with a warning."""
        # Arrange
        await reporter.report(active, ProgressUpdate(5))
        clock.return_value = 1.0

        # Act
        await reporter.report(active, ProgressUpdate(5))
        await reporter.report(active, ProgressUpdate(4))

        # Assert
        assert sink.progress_values == [5]
        assert _actions(mock_logger, "warn").count("PROGRESS_NOT_INCREASING") == 2

    @pytest.mark.asyncio
    async def test_rate_limited_within_interval(
        self, reporter: ProgressReporter, sink, mock_logger: MagicMock, active: str, clock
    ) -> None:
        """A second increasing update inside 100 ms is dropped."""
        # Arrange
        await reporter.report(active, ProgressUpdate(1))
        clock.return_value = 0.05

        # Act
        await reporter.report(active, ProgressUpdate(2))

        # Assert
        assert sink.progress_values == [1]
        assert "PROGRESS_RATE_LIMITED" in _actions(mock_logger, "debug")

    @pytest.mark.asyncio
    async def test_first_update_is_not_rate_limited(
        self, reporter: ProgressReporter, sink, active: str, clock
    ) -> None:
        """Without prior state the rate limit does not apply."""
        # Act
        await reporter.report(active, ProgressUpdate(0))

        # Assert
        assert sink.progress_values == [0]

    @pytest.mark.asyncio
    async def test_completion_removes_state(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """Reaching the declared total sends the update and forgets the token."""
        # Arrange
        await reporter.report(active, ProgressUpdate(50, total=100))
        clock.return_value = 0.2

        # Act
        await reporter.report(active, ProgressUpdate(100, total=100))

        # Assert
        assert sink.progress_values == [50, 100]
        assert reporter.active_count == 0

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged_not_raised(
        self, reporter: ProgressReporter, sink, mock_logger: MagicMock, active: str, clock
    ) -> None:
        """A failing sink never propagates and leaves state untouched."""
        # Arrange
        sink.error = ConnectionError("session closed")

        # Act
        await reporter.report(active, ProgressUpdate(1))

        # Assert
        assert "PROGRESS_REPORT_ERROR" in _actions(mock_logger, "error")
        assert reporter.active_count == 0

    @pytest.mark.asyncio
    async def test_counts_updates(self, reporter: ProgressReporter, active: str, clock) -> None:
        """Each emitted update increments the token's update count."""
        # Arrange
        await reporter.report(active, ProgressUpdate(1))
        clock.return_value = 0.1

        # Act
        await reporter.report(active, ProgressUpdate(2))

        # Assert
        stats = reporter.get_stats()
        assert stats["active_progress_tokens"] == 1
        assert stats["progress_states"] == [{"token": "tok-1", "last_progress": 2, "update_count": 2}]


class TestEndToEnd:
    """Progress scenario across one operation."""

    @pytest.mark.asyncio
    async def test_progress_scenario(
        self, reporter: ProgressReporter, sink, tracker: RequestTracker, clock
    ) -> None:
        """0 sent, 50 sent after 100 ms, 40 dropped, 100 sent after 100 ms and state removed."""
        # Arrange
        tracker.register("req-1", "tok-1")

        # Act
        await reporter.report("tok-1", ProgressUpdate(0, total=100))
        clock.return_value = 0.1
        await reporter.report("tok-1", ProgressUpdate(50, total=100))
        await reporter.report("tok-1", ProgressUpdate(40, total=100))
        clock.return_value = 0.2
        await reporter.report("tok-1", ProgressUpdate(100, total=100))

        # Assert
        assert sink.progress_values == [0, 50, 100]
        assert reporter.get_stats()["active_progress_tokens"] == 0


class TestHelpers:
    """Percentage, step and batch helpers."""

    @pytest.mark.asyncio
    async def test_percentage_sets_total_100(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """report_percentage reports against a total of 100."""
        # Act
        await reporter.report_percentage(active, 25, "Quarter done")

        # Assert
        assert sink.notifications[0]["params"] == {
            "progressToken": "tok-1",
            "progress": 25,
            "total": 100,
            "message": "Quarter done",
        }

    @pytest.mark.parametrize("percentage", [-1, 100.5])
    @pytest.mark.asyncio
    async def test_percentage_out_of_range_is_dropped(
        self, reporter: ProgressReporter, sink, mock_logger: MagicMock, active: str, clock, percentage: float
    ) -> None:
        """Percentages outside [0, 100] are rejected."""
        # Act
        await reporter.report_percentage(active, percentage)

        # Assert
        assert sink.notifications == []
        assert "PROGRESS_PERCENTAGE_INVALID" in _actions(mock_logger, "warn")

    @pytest.mark.asyncio
    async def test_step(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """report_step uses step numbers as progress and total."""
        # Act
        await reporter.report_step(active, 2, 5, "Step 2")

        # Assert
        params = sink.notifications[0]["params"]
        assert (params["progress"], params["total"], params["message"]) == (2, 5, "Step 2")

    @pytest.mark.asyncio
    async def test_batch_message(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """report_batch formats a readable message with a rounded percentage."""
        # Act
        await reporter.report_batch(active, 1, 3, "pages")

        # Assert
        assert sink.notifications[0]["params"]["message"] == "Processed 1 of 3 pages (33%)"

    @pytest.mark.asyncio
    async def test_batch_with_zero_total(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """A total of zero reports 0% instead of failing."""
        # Act
        await reporter.report_batch(active, 0, 0)

        # Assert
        assert sink.notifications[0]["params"]["message"] == "Processed 0 of 0 items (0%)"

    @pytest.mark.asyncio
    async def test_progress_callback(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """create_progress_callback binds report() to one token."""
        # Arrange
        callback = reporter.create_progress_callback(active)

        # Act
        await callback(ProgressUpdate(3, total=10))

        # Assert
        assert sink.progress_values == [3]

    @pytest.mark.asyncio
    async def test_percentage_callback(self, reporter: ProgressReporter, sink, active: str, clock) -> None:
        """create_percentage_callback binds report_percentage() to one token."""
        # Arrange
        callback = reporter.create_percentage_callback(active)

        # Act
        await callback(40, "Almost half")

        # Assert
        assert sink.notifications[0]["params"]["total"] == 100
        assert sink.notifications[0]["params"]["message"] == "Almost half"


class TestCleanup:
    """State cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_token(self, reporter: ProgressReporter, active: str, clock) -> None:
        """cleanup() forgets one token's state."""
        # Arrange
        await reporter.report(active, ProgressUpdate(1))

        # Act
        reporter.cleanup(active)

        # Assert
        assert reporter.active_count == 0

    @pytest.mark.asyncio
    async def test_cleanup_completed_requests(
        self, reporter: ProgressReporter, tracker: RequestTracker, active: str, clock
    ) -> None:
        """States whose operation is gone are removed; others kept."""
        # Arrange
        tracker.register("req-2", "tok-2")
        await reporter.report(active, ProgressUpdate(1))
        await reporter.report("tok-2", ProgressUpdate(1))
        tracker.cleanup("req-1")

        # Act
        removed = reporter.cleanup_completed_requests()

        # Assert
        assert removed == 1
        assert [s["token"] for s in reporter.get_stats()["progress_states"]] == ["tok-2"]

    @pytest.mark.asyncio
    async def test_shutdown_clears_state(
        self, reporter: ProgressReporter, mock_logger: MagicMock, active: str, clock
    ) -> None:
        """shutdown() clears every progress state."""
        # Arrange
        await reporter.report(active, ProgressUpdate(1))

        # Act
        reporter.shutdown()

        # Assert
        assert reporter.active_count == 0
        assert "PROGRESS_REPORTER_SHUTDOWN" in _actions(mock_logger, "info")
