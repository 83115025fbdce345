"""Telemetry domain: structured logging and log shipping.

Structure:
    models/             Pydantic LogRecord and wire batch
    shipping/           LogShipper (delivery) and LogBatcher (smoothing)
    system/             System logger for the pipeline's own diagnostics
    structured_logger   StructuredLogger facade used by the rest of the server
"""

__all__: list[str] = []
