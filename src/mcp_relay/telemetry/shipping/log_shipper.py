"""Log shipper: batched, retried delivery of log records to the ingestion API.

Records are queued in memory and delivered in batches of at most
`batch_size` by POSTing `{"logs": [...]}` to the configured HTTPS endpoint.

Delivery policy:
- 2xx: success, batch consumed
- 4xx other than 429: permanent, raised on the first attempt
- 5xx, 429, network errors: transient, retried up to `max_retries` attempts
  with exponential backoff (0.5s base, 1s base for 429)

A batch that fails delivery is put back at the head of the queue in its
original order, so the next scheduled or size-triggered flush retries it
ahead of anything queued since. Only one batch is in flight at a time.

Flushes happen:
- every `flush_interval` seconds (background task)
- as soon as the queue reaches `batch_size` records (background task)
- when a caller awaits flush() (errors propagate to that caller)
- once more during shutdown() (best effort)
"""

from __future__ import annotations

__all__ = [
    "LogShipper",
    "retry_delay",
]

import asyncio
import time
import traceback
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from mcp_relay.config import LogShippingConfig, validate_shipping_config
from mcp_relay.constants import (
    API_KEY_ENV_VAR,
    API_KEY_HEADER,
    DELIVERY_TIMEOUT_SECONDS,
    HEALTHY_FLUSH_INTERVAL_MULTIPLIER,
    RATE_LIMIT_BASE_DELAY_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
    TRANSPORT_ERRORS,
)
from mcp_relay.exceptions import (
    ConfigurationError,
    LogDeliveryError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from mcp_relay.telemetry.models.log_record import (
    LogBatch,
    LogRecord,
    coerce_record,
    is_transportable,
    normalize_record,
)
from mcp_relay.telemetry.system.system_logger import get_system_logger
from mcp_relay.utils.logging.iso_formatter import iso_timestamp

_system_logger = get_system_logger()

QueuedEntry = LogRecord | Mapping[str, Any]


def retry_delay(status: int | None, attempt: int) -> float:
    """Backoff before the attempt after `attempt` (1-based), in seconds.

    Args:
        status: HTTP status of the failed attempt, None for network errors.
        attempt: Number of the attempt that just failed.

    Returns:
        1.0 * 2^(attempt-1) for 429, 0.5 * 2^(attempt-1) otherwise.
    """
    base = RATE_LIMIT_BASE_DELAY_SECONDS if status == 429 else RETRY_BASE_DELAY_SECONDS
    return base * (2 ** (attempt - 1))


class LogShipper:
    """Owns the outbound delivery pipeline for structured log records.

    The periodic flush task needs a running event loop. It starts on
    construction when one is running, otherwise on the first start() call.
    """

    def __init__(
        self,
        config: LogShippingConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize and validate the shipper.

        Args:
            config: Log shipping configuration.
            client: HTTP client to deliver with. Created on first use if omitted;
                a caller-supplied client is not closed by shutdown().
            sleep: Awaitable used for retry backoff.

        Raises:
            ConfigurationError: If shipping is enabled and the endpoint is
                missing or not HTTPS, or an API key is required but absent.
        """
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

        self._queue: deque[QueuedEntry] = deque()
        self._flush_task: asyncio.Task[None] | None = None
        self._pending_flushes: set[asyncio.Task[None]] = set()
        self._flushing = False
        self._shutting_down = False
        self._last_successful_flush: float = 0.0

        if not self.config.enabled:
            return

        errors = validate_shipping_config(self.config)
        if errors:
            raise ConfigurationError("; ".join(errors), errors=errors)

        if not self.config.api_key and not self.config.require_api_key:
            _system_logger.warning(
                {
                    "event": "log_shipper_api_key_missing",
                    "message": (
                        "API key not configured. Log shipping will work now "
                        "but will require an API key in the future."
                    ),
                    "help": f"Set {API_KEY_ENV_VAR} to prepare for future requirements",
                }
            )

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass  # No loop yet, start() is called once the server is running
        else:
            self.start()

        _system_logger.info(
            {
                "event": "log_shipper_initialized",
                "endpoint": self.config.endpoint,
                "batch_size": self.config.batch_size,
                "flush_interval": self.config.flush_interval,
                "max_retries": self.config.max_retries,
            }
        )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def add_log(self, entry: QueuedEntry) -> None:
        """Queue one record for delivery.

        Never raises and never blocks: when the queue reaches batch_size an
        immediate flush is scheduled in the background.

        Args:
            entry: LogRecord, or a mapping of record fields.
        """
        if not self.config.enabled or self._shutting_down:
            return

        self._queue.append(entry)

        if len(self._queue) >= self.config.batch_size and not self._pending_flushes:
            self._schedule_flush("immediate")

    async def flush(self) -> None:
        """Deliver one batch from the head of the queue.

        No-op if shipping is disabled, the queue is empty, or another batch
        is already in flight.

        Raises:
            LogDeliveryError: Delivery failed; the batch is back at the head
                of the queue. Cancellation also puts it back.
        """
        if not self.config.enabled or not self._queue:
            return

        if self._flushing:
            _system_logger.debug(
                {"event": "log_flush_skipped", "reason": "batch already in flight"}
            )
            return

        self._flushing = True
        batch = [self._queue.popleft() for _ in range(min(self.config.batch_size, len(self._queue)))]
        delivered = False
        try:
            records = self._prepare_batch(batch)
            if records:
                await self._send_with_retry(records)
            delivered = True
            self._last_successful_flush = time.time()

            _system_logger.debug(
                {
                    "event": "logs_shipped",
                    "batch_size": len(records),
                    "queue_remaining": len(self._queue),
                    "last_flush": iso_timestamp(self._last_successful_flush),
                }
            )
        except Exception as e:
            _system_logger.error(
                {
                    "event": "log_flush_failed",
                    "message": "Failed to ship logs after retries",
                    "error": str(e),
                    "status": getattr(e, "status", None),
                    "batch_size": len(batch),
                    "queue_size": len(self._queue) + len(batch),
                }
            )
            raise
        finally:
            # Undelivered batches, cancelled ones included, go back to the
            # head ahead of newer records
            if not delivered:
                self._queue.extendleft(reversed(batch))
            self._flushing = False

        if (
            len(self._queue) >= self.config.batch_size
            and not self._shutting_down
            and not self._pending_flushes
        ):
            self._schedule_flush("immediate")

    def _prepare_batch(self, batch: Iterable[QueuedEntry]) -> list[LogRecord]:
        """Normalise a batch and drop records the API would reject."""
        records: list[LogRecord] = []
        dropped = 0
        for entry in batch:
            record = coerce_record(entry)
            if record is None:
                dropped += 1
                continue
            record = normalize_record(record)
            if not is_transportable(record):
                dropped += 1
                continue
            records.append(record)

        if dropped:
            _system_logger.warning(
                {
                    "event": "log_records_dropped",
                    "message": "Dropped malformed log records before transport",
                    "dropped": dropped,
                    "kept": len(records),
                }
            )
        return records

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DELIVERY_TIMEOUT_SECONDS)
        return self._client

    async def _send_with_retry(self, records: list[LogRecord]) -> None:
        """Deliver records, retrying transient failures with backoff.

        Raises:
            PermanentDeliveryError: On the first non-retryable response.
            TransientDeliveryError: When the last attempt fails.
        """
        max_retries = self.config.max_retries
        for attempt in range(1, max_retries + 1):
            try:
                await self._send_logs(records)
                return
            except PermanentDeliveryError as e:
                _system_logger.error(
                    {
                        "event": "log_delivery_rejected",
                        "message": "Client error - not retrying",
                        "status": e.status,
                        "error": str(e),
                        "attempt": attempt,
                    }
                )
                raise
            except TransientDeliveryError as e:
                if attempt >= max_retries:
                    _system_logger.error(
                        {
                            "event": "log_delivery_retries_exhausted",
                            "message": "Max retries exceeded",
                            "status": e.status,
                            "error": str(e),
                            "attempts": attempt,
                        }
                    )
                    raise

                delay = retry_delay(e.status, attempt)
                _system_logger.warning(
                    {
                        "event": "log_delivery_retry",
                        "message": "Retrying log shipment",
                        "status": e.status,
                        "error": str(e),
                        "attempt": attempt,
                        "next_attempt_in_seconds": delay,
                        "max_retries": max_retries,
                    }
                )
                await self._sleep(delay)

    async def _send_logs(self, records: list[LogRecord]) -> None:
        """POST one batch to the ingestion endpoint.

        Raises:
            TransientDeliveryError: Network failure, 429 or 5xx.
            PermanentDeliveryError: Any other non-2xx response.
        """
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers[API_KEY_HEADER] = self.config.api_key

        payload = LogBatch(logs=records).to_payload()

        try:
            response = await self._get_client().post(
                self.config.endpoint,
                json=payload,
                headers=headers,
            )
        except TRANSPORT_ERRORS as e:
            raise TransientDeliveryError(
                f"Network error delivering logs: {type(e).__name__}: {e}"
            ) from e

        if response.is_success:
            return

        status = response.status_code
        body = response.text

        _system_logger.error(
            {
                "event": "log_ingestion_http_error",
                "message": "HTTP error response from log ingestion API",
                "status": status,
                "reason": response.reason_phrase,
                "response_body": body,
                "record_count": len(records),
                "endpoint": self.config.endpoint,
                "headers": sorted(headers),
            }
        )

        if status in (401, 403) and not self.config.api_key:
            message = (
                f"Authentication required ({status}). The log ingestion API now requires "
                f"an API key. Please set {API_KEY_ENV_VAR} environment variable and "
                "restart the server."
            )
        elif status == 400:
            message = (
                f"Bad Request (400): The log payload format is invalid. Response: {body}. "
                "Check the payload structure and field formats."
            )
        else:
            message = f"HTTP {status}: {response.reason_phrase}. Response: {body}"

        if 400 <= status < 500 and status != 429:
            raise PermanentDeliveryError(message, status=status, response_body=body)
        raise TransientDeliveryError(message, status=status, response_body=body)

    # ------------------------------------------------------------------
    # Background flushing
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic flush task, replacing any running one.

        Raises:
            RuntimeError: If called without a running event loop.
        """
        if not self.config.enabled or self._shutting_down:
            return

        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()

        self._flush_task = asyncio.get_running_loop().create_task(
            self._flush_loop(),
            name="log_shipper_flush",
        )

    async def _flush_loop(self) -> None:
        """Periodic flush loop."""
        while True:
            await asyncio.sleep(self.config.flush_interval)
            await self._flush_logging_errors("scheduled")

    def _schedule_flush(self, trigger: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called from sync code outside the loop; the timer picks it up
            return

        task = loop.create_task(self._flush_logging_errors(trigger), name=f"log_shipper_{trigger}_flush")
        self._pending_flushes.add(task)
        task.add_done_callback(self._pending_flushes.discard)

    async def _flush_logging_errors(self, trigger: str) -> None:
        """Flush without raising; failures are already re-queued by flush()."""
        try:
            await self.flush()
        except LogDeliveryError as e:
            _system_logger.error(
                {
                    "event": f"{trigger}_flush_failed",
                    "error": str(e),
                    "status": e.status,
                    "queue_size": len(self._queue),
                }
            )
        except Exception as e:
            _system_logger.error(
                {
                    "event": f"{trigger}_flush_crashed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "traceback": traceback.format_exc(),
                }
            )

    async def wait_for_pending_flushes(self) -> None:
        """Wait until every size-triggered background flush has finished."""
        if self._pending_flushes:
            await asyncio.gather(*list(self._pending_flushes), return_exceptions=True)

    async def _stop_flush_task(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Health and shutdown
    # ------------------------------------------------------------------

    def get_health_status(self) -> dict[str, Any]:
        """Report shipper health for operators.

        Returns:
            Dict with healthy, last_flush (ISO 8601 or None), queue_size
            and a config summary.
        """
        last = self._last_successful_flush
        max_silence = self.config.flush_interval * HEALTHY_FLUSH_INTERVAL_MULTIPLIER
        healthy = self.config.enabled and (last == 0 or time.time() - last < max_silence)

        return {
            "healthy": healthy,
            "last_flush": iso_timestamp(last) if last > 0 else None,
            "queue_size": len(self._queue),
            "config": {
                "enabled": self.config.enabled,
                "endpoint": self.config.endpoint,
                "batch_size": self.config.batch_size,
                "flush_interval": self.config.flush_interval,
            },
        }

    async def shutdown(self) -> None:
        """Stop background flushing and make one final best-effort flush.

        Never raises: records that still cannot be delivered are reported
        as lost.
        """
        self._shutting_down = True
        await self._stop_flush_task()
        await self.wait_for_pending_flushes()

        _system_logger.info({"event": "log_shipper_shutdown", "queue_size": len(self._queue)})

        if self._queue:
            try:
                await self.flush()
                _system_logger.info({"event": "log_shipper_final_flush_completed"})
            except Exception as e:
                _system_logger.error(
                    {
                        "event": "log_shipper_final_flush_failed",
                        "error": str(e),
                        "lost_logs": len(self._queue),
                    }
                )

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
