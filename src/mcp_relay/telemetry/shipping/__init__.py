"""Delivery of structured log records to the log ingestion API.

    log_shipper     LogShipper: queue, batching, retry/backoff, HTTPS delivery, health
    log_batcher     LogBatcher: looser interval/size smoothing in front of the shipper
"""

from mcp_relay.telemetry.shipping.log_batcher import LogBatcher
from mcp_relay.telemetry.shipping.log_shipper import LogShipper, retry_delay

__all__ = [
    "LogBatcher",
    "LogShipper",
    "retry_delay",
]
