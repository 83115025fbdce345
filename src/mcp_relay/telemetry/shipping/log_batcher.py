"""Log batcher: upstream smoothing layer in front of the LogShipper.

Call sites log in bursts; the batcher absorbs them in its own queue and hands
them to the shipper either every `flush_interval` seconds or as soon as
`max_batch_size` records have accumulated. The shipper's batch size and retry
policy remain authoritative - the batcher only decides *when* records move
downstream, never how they are delivered.
"""

from __future__ import annotations

__all__ = ["LogBatcher"]

import asyncio
import traceback
from collections import deque
from typing import Any

from mcp_relay.constants import DEFAULT_BATCH_SIZE, DEFAULT_FLUSH_INTERVAL_SECONDS
from mcp_relay.telemetry.models.log_record import LogRecord, generate_session_id
from mcp_relay.telemetry.shipping.log_shipper import LogShipper
from mcp_relay.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


class LogBatcher:
    """Fixed-interval and size-triggered auto-flush wrapper around a LogShipper."""

    def __init__(
        self,
        shipper: LogShipper,
        max_batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the batcher.

        Args:
            shipper: Shipper that owns delivery.
            max_batch_size: Records to accumulate before flushing early.
            flush_interval: Seconds between automatic flushes.
        """
        self.shipper = shipper
        self.max_batch_size = max_batch_size
        self.flush_interval = flush_interval
        self.session_id = generate_session_id()

        self._records: deque[LogRecord] = deque()
        self._task: asyncio.Task[None] | None = None
        self._pending_flushes: set[asyncio.Task[None]] = set()

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass  # No loop yet, start() is called once the server is running
        else:
            self.start()

    def start(self) -> None:
        """Start the auto-flush task, replacing any running one."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self._task = asyncio.get_running_loop().create_task(
            self._flush_loop(),
            name="log_batcher_flush",
        )

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush()

    def add(self, record: LogRecord) -> None:
        """Queue a record, flushing in the background once the threshold is hit."""
        self._records.append(record)

        if len(self._records) >= self.max_batch_size:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return  # Next timer tick or shutdown() drains it
            task = loop.create_task(self.flush(), name="log_batcher_size_flush")
            self._pending_flushes.add(task)
            task.add_done_callback(self._pending_flushes.discard)

    async def flush(self) -> None:
        """Move up to max_batch_size records into the shipper and flush it.

        Never raises. A failed shipper flush keeps the records in the
        shipper's queue for its next attempt.
        """
        if not self._records:
            return

        count = min(self.max_batch_size, len(self._records))
        for _ in range(count):
            self.shipper.add_log(self._records.popleft())

        try:
            await self.shipper.flush()
        except Exception as e:
            _system_logger.error(
                {
                    "event": "log_batcher_flush_failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "handed_off": count,
                    "traceback": traceback.format_exc(),
                }
            )

    def get_batch_status(self) -> dict[str, Any]:
        return {
            "queue_size": len(self._records),
            "max_batch_size": self.max_batch_size,
            "flush_interval": self.flush_interval,
            "session_id": self.session_id,
        }

    async def shutdown(self) -> None:
        """Stop the auto-flush task and hand remaining records to the shipper."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._pending_flushes:
            await asyncio.gather(*list(self._pending_flushes), return_exceptions=True)

        while self._records:
            await self.flush()
