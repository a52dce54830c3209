"""
Observability module: Metrics and structured logging.
"""

from sessionstore.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    SessionMetrics,
)
from sessionstore.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "SessionMetrics",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
