"""Unit tests for LogBatcher.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mcp_relay.config import LogShippingConfig
from mcp_relay.exceptions import TransientDeliveryError
from mcp_relay.telemetry.models.log_record import LogRecord
from mcp_relay.telemetry.shipping.log_batcher import LogBatcher
from mcp_relay.telemetry.shipping.log_shipper import LogShipper


def _record(message: str = "hello") -> LogRecord:
    return LogRecord(message=message, user="alice", level="INFO")


@pytest.fixture
def shipper() -> MagicMock:
    """Stand-in LogShipper recording what it is handed."""
    mock = MagicMock()
    mock.flush = AsyncMock()
    return mock


BatcherFactory = Callable[..., LogBatcher]


@pytest.fixture
async def make_batcher(shipper: MagicMock) -> AsyncIterator[BatcherFactory]:
    """Build batchers inside the loop and shut them down afterwards."""
    created: list[LogBatcher] = []

    def _make(**kwargs) -> LogBatcher:
        batcher = LogBatcher(shipper, **kwargs)
        created.append(batcher)
        return batcher

    yield _make

    for batcher in created:
        await batcher.shutdown()


class TestConstruction:
    """Construction and auto-start."""

    def test_outside_loop_does_not_start(self, shipper: MagicMock) -> None:
        """Without a running loop the timer waits for start()."""
        # Act
        batcher = LogBatcher(shipper)

        # Assert
        assert batcher._task is None
        assert batcher.session_id.startswith("mcp-relay-")

    @pytest.mark.asyncio
    async def test_inside_loop_starts_timer(self, make_batcher: BatcherFactory) -> None:
        """Inside a running loop the auto-flush task starts immediately."""
        # Act
        batcher = make_batcher()

        # Assert
        assert batcher._task is not None
        assert batcher._task.get_name() == "log_batcher_flush"

    @pytest.mark.asyncio
    async def test_start_replaces_running_task(self, make_batcher: BatcherFactory) -> None:
        """A second start() cancels the previous task first."""
        # Arrange
        batcher = make_batcher()
        first = batcher._task

        # Act
        batcher.start()
        await asyncio.sleep(0)

        # Assert
        assert first is not None and first.cancelled()
        assert batcher._task is not first


class TestFlush:
    """Handing records to the shipper."""

    @pytest.mark.asyncio
    async def test_empty_flush_does_nothing(self, make_batcher: BatcherFactory, shipper: MagicMock) -> None:
        """Nothing queued, nothing handed off."""
        # Arrange
        batcher = make_batcher()

        # Act
        await batcher.flush()

        # Assert
        shipper.add_log.assert_not_called()
        shipper.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hands_records_in_order(self, make_batcher: BatcherFactory, shipper: MagicMock) -> None:
        """Records are handed to the shipper in insertion order, then flushed."""
        # Arrange
        batcher = make_batcher()
        records = [_record("a"), _record("b")]
        for record in records:
            batcher.add(record)

        # Act
        await batcher.flush()

        # Assert
        assert [c.args[0] for c in shipper.add_log.call_args_list] == records
        shipper.flush.assert_awaited_once()
        assert batcher.get_batch_status()["queue_size"] == 0

    @pytest.mark.asyncio
    async def test_hands_at_most_max_batch_size(self, make_batcher: BatcherFactory, shipper: MagicMock) -> None:
        """One flush moves at most max_batch_size records."""
        # Arrange
        batcher = make_batcher(max_batch_size=10)
        batcher._records.extend(_record(str(i)) for i in range(12))

        # Act
        await batcher.flush()

        # Assert
        assert shipper.add_log.call_count == 10
        assert batcher.get_batch_status()["queue_size"] == 2

    @pytest.mark.asyncio
    async def test_shipper_failure_is_logged_not_raised(
        self, make_batcher: BatcherFactory, shipper: MagicMock
    ) -> None:
        """A failing shipper flush never escapes the batcher."""
        # Arrange
        shipper.flush.side_effect = TransientDeliveryError("HTTP 503", status=503)
        batcher = make_batcher()
        batcher.add(_record())

        with patch("mcp_relay.telemetry.shipping.log_batcher._system_logger") as mock_logger:
            # Act
            await batcher.flush()

        # Assert
        event = mock_logger.error.call_args.args[0]
        assert event["event"] == "log_batcher_flush_failed"
        assert event["handed_off"] == 1

    @pytest.mark.asyncio
    async def test_reaching_threshold_flushes_in_background(
        self, make_batcher: BatcherFactory, shipper: MagicMock
    ) -> None:
        """Hitting max_batch_size schedules a flush without awaiting it."""
        # Arrange
        batcher = make_batcher(max_batch_size=2)

        # Act
        batcher.add(_record("a"))
        batcher.add(_record("b"))
        await asyncio.gather(*batcher._pending_flushes)

        # Assert
        assert shipper.add_log.call_count == 2
        shipper.flush.assert_awaited_once()


class TestShutdown:
    """Draining on shutdown."""

    @pytest.mark.asyncio
    async def test_drains_every_record(self, shipper: MagicMock) -> None:
        """shutdown() hands off everything, in max_batch_size chunks."""
        # Arrange
        batcher = LogBatcher(shipper, max_batch_size=2)
        batcher._records.extend(_record(str(i)) for i in range(5))

        # Act
        await batcher.shutdown()

        # Assert
        assert shipper.add_log.call_count == 5
        assert shipper.flush.await_count == 3
        assert batcher._task is None

    @pytest.mark.asyncio
    async def test_shipper_batch_in_backoff_survives(self) -> None:
        """Stopping the batcher mid-delivery leaves the batch queued in the shipper."""
        # Arrange
        responses = [httpx.Response(503), httpx.Response(200)]
        requests: list[httpx.Request] = []

        def ingest(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return responses.pop(0) if len(responses) > 1 else responses[0]

        backoff_entered = asyncio.Event()

        async def stalled_sleep(delay: float) -> None:
            backoff_entered.set()
            await asyncio.Event().wait()

        config = LogShippingConfig(
            enabled=True, endpoint="https://logs.example.com/ingest", api_key="k", flush_interval=60
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(ingest)) as client:
            shipper = LogShipper(config, client=client, sleep=stalled_sleep)
            batcher = LogBatcher(shipper, max_batch_size=10, flush_interval=0.01)
            for message in ("a", "b", "c"):
                batcher.add(_record(message))
            await asyncio.wait_for(backoff_entered.wait(), timeout=2)

            # Act
            await batcher.shutdown()
            queued_after_batcher = shipper.queue_size
            await shipper.shutdown()

        # Assert
        assert queued_after_batcher == 3
        assert len(requests) == 2
        assert shipper.queue_size == 0

    @pytest.mark.asyncio
    async def test_status_reports_settings(self, make_batcher: BatcherFactory) -> None:
        """get_batch_status() reports queue and settings."""
        # Arrange
        batcher = make_batcher(max_batch_size=7, flush_interval=2.0)
        batcher.add(_record())

        # Act
        status = batcher.get_batch_status()

        # Assert
        assert status == {
            "queue_size": 1,
            "max_batch_size": 7,
            "flush_interval": 2.0,
            "session_id": batcher.session_id,
        }
