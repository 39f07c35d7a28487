"""
Monitoring for the Zether account engine.

This package provides:
- Metrics collection (counters, gauges, histograms) with Prometheus export
- Structured logging with JSON output and private-scalar redaction

Usage:
    from zether.monitoring import metrics, get_logger

    metrics.increment("proofs_compiled", labels={"circuit": "transfer"})

    logger = get_logger(__name__)
    logger.info("Balance decoded", extra={"giant_steps": 3})
"""

from .logging import LoggingContext, configure_logging, get_logger
from .metrics import MetricsCollector, metrics

__all__ = [
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "LoggingContext",
]
