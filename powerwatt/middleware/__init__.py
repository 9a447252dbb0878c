"""
Middleware package for the PowerWatt service.

Contains:
- MetricsMiddleware: Request tracking and Prometheus metrics
- Pipeline metric recording helpers
"""

from powerwatt.middleware.metrics import (
    MetricsMiddleware,
    get_metrics_text,
    get_metrics_content_type,
    record_tick,
    record_power_sample,
    record_minute_flush,
    record_store_error,
    record_cleanup
)

__all__ = [
    "MetricsMiddleware",
    "get_metrics_text",
    "get_metrics_content_type",
    "record_tick",
    "record_power_sample",
    "record_minute_flush",
    "record_store_error",
    "record_cleanup"
]
