"""Shared fixtures for request lifecycle tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from mcp_relay.lifecycle.progress_reporter import ProgressReporter
from mcp_relay.lifecycle.request_tracker import RequestTracker
from mcp_relay.telemetry.structured_logger import StructuredLogger


class RecordingSink:
    """Notification sink that records every notification it is sent."""

    def __init__(self) -> None:
        self.notifications: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def send_notification(self, notification: dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.notifications.append(notification)

    @property
    def progress_values(self) -> list[float]:
        return [n["params"]["progress"] for n in self.notifications]


@pytest.fixture
def mock_logger() -> MagicMock:
    """Stand-in StructuredLogger."""
    return MagicMock(spec=StructuredLogger)


@pytest.fixture
def tracker(mock_logger: MagicMock) -> RequestTracker:
    return RequestTracker(mock_logger)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def reporter(sink: RecordingSink, mock_logger: MagicMock, tracker: RequestTracker) -> ProgressReporter:
    return ProgressReporter(sink, mock_logger, tracker)

