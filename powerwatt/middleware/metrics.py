"""
Metrics - Request tracking and pipeline counters for Prometheus.

This module provides:
- Request count and duration per endpoint (middleware)
- Sampling tick counters and durations
- Power source and last total watts
- Minute flushes, store errors and retention cleanup
"""

import time
from typing import Callable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST, CollectorRegistry


# ============================================================================
# Prometheus Metrics Registry
# ============================================================================

# Separate registry so the service never exports default process collectors twice
metrics_registry = CollectorRegistry()

UNMATCHED_ENDPOINT = "unmatched"

api_requests_total = Counter(
    'api_requests_total',
    'Total number of API requests',
    ['method', 'endpoint', 'status_code'],
    registry=metrics_registry
)

api_request_duration_seconds = Histogram(
    'api_request_duration_seconds',
    'API request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=metrics_registry
)

api_errors_total = Counter(
    'api_errors_total',
    'Total number of API errors',
    ['method', 'endpoint', 'error_type'],
    registry=metrics_registry
)

# Sampling pipeline
sampling_ticks_total = Counter(
    'powerwatt_sampling_ticks_total',
    'Total number of sampling ticks',
    ['outcome'],
    registry=metrics_registry
)

sampling_tick_duration_seconds = Histogram(
    'powerwatt_sampling_tick_duration_seconds',
    'Duration of one sampling tick in seconds',
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
    registry=metrics_registry
)

power_samples_total = Counter(
    'powerwatt_power_samples_total',
    'Total power readings by source',
    ['source'],
    registry=metrics_registry
)

total_power_watts = Gauge(
    'powerwatt_total_power_watts',
    'Last valid total system power in watts',
    registry=metrics_registry
)

minute_flushes_total = Counter(
    'powerwatt_minute_flushes_total',
    'Total minute bucket flushes by reason',
    ['reason'],
    registry=metrics_registry
)

store_errors_total = Counter(
    'powerwatt_store_errors_total',
    'Total usage store errors by operation',
    ['operation'],
    registry=metrics_registry
)

cleanup_rows_deleted_total = Counter(
    'powerwatt_cleanup_rows_deleted_total',
    'Total rows deleted by retention cleanup',
    registry=metrics_registry
)


# ============================================================================
# Metrics Middleware
# ============================================================================

class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for collecting API request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics collection for the metrics endpoint itself
        if request.url.path == "/api/v1/system/metrics":
            return await call_next(request)

        start_time = time.time()
        method = request.method

        try:
            response = await call_next(request)
            status_code = response.status_code
            endpoint = self._endpoint_label(request)

            api_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()

            api_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)

            if status_code >= 400:
                error_type = "client_error" if status_code < 500 else "server_error"
                api_errors_total.labels(
                    method=method,
                    endpoint=endpoint,
                    error_type=error_type
                ).inc()

            return response

        except Exception as exc:
            endpoint = self._endpoint_label(request)
            api_errors_total.labels(
                method=method,
                endpoint=endpoint,
                error_type=exc.__class__.__name__
            ).inc()

            api_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)

            raise exc

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        """
        Route template for the request, e.g. /api/v1/usage/buckets.

        Paths that matched no route share one label so unknown URLs cannot
        grow the label set.
        """
        route = request.scope.get("route")
        return getattr(route, "path", None) or UNMATCHED_ENDPOINT


# ============================================================================
# Metrics Export Functions
# ============================================================================

def get_metrics_text() -> bytes:
    """
    Generate Prometheus text format metrics.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(metrics_registry)


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        str: Content-Type header value
    """
    return CONTENT_TYPE_LATEST


# ============================================================================
# Helper Functions for Manual Metric Recording
# ============================================================================

def record_tick(duration: float, outcome: str = "ok"):
    """Record one sampling tick."""
    sampling_ticks_total.labels(outcome=outcome).inc()
    sampling_tick_duration_seconds.observe(duration)


def record_power_sample(source: str, watts: Optional[float] = None):
    """Record a total power reading and, when valid, its value."""
    power_samples_total.labels(source=source).inc()
    if watts is not None:
        total_power_watts.set(watts)


def record_minute_flush(reason: str):
    """Record a minute flush (boundary or force)."""
    minute_flushes_total.labels(reason=reason).inc()


def record_store_error(operation: str):
    """Record a failed store operation."""
    store_errors_total.labels(operation=operation).inc()


def record_cleanup(rows_deleted: int):
    """Record rows removed by retention cleanup."""
    if rows_deleted > 0:
        cleanup_rows_deleted_total.inc(rows_deleted)
