"""
Observability module: metrics and structured logging.
"""

from cadence.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    EngineMetrics,
)
from cadence.observability.logging import (
    JsonFormatter,
    StructuredLogger,
    LogLevel,
    log_context,
    setup_logging,
)

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "EngineMetrics",
    "JsonFormatter",
    "StructuredLogger",
    "LogLevel",
    "log_context",
    "setup_logging",
]
