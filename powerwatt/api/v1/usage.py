"""
Usage API - Read access to live samples and persisted minute buckets.

This module provides endpoints for:
- The latest combined power sample
- Total and per-app minute buckets over a time range
- Per-app summaries over a time range
- Retention, force flush and coefficient management
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional, Tuple
import asyncio
import logging

from powerwatt.deps import get_usage_manager
from powerwatt.exceptions import InvalidRangeException
from powerwatt.models.usage import TimeRange
from powerwatt.models.responses import (
    AppMinuteBucketsResponse,
    AppSummariesResponse,
    CoefficientsResponse,
    CurrentPowerResponse,
    FlushResponse,
    MinuteBucketsResponse,
    RetentionRequest,
    RetentionResponse,
)
from powerwatt.services.usage_manager import UsageManager

router = APIRouter()
logger = logging.getLogger(__name__)


def resolve_range(start: Optional[int], end: Optional[int], window: Optional[TimeRange]) -> Tuple[int, int]:
    """
    Turn query parameters into inclusive unix bounds.

    Args:
        start: Explicit start (unix seconds)
        end: Explicit end (unix seconds)
        window: Predefined window ending at the end of the current minute

    Returns:
        (start, end) tuple
    """
    if window is not None:
        return window.bounds()
    if start is None and end is None:
        return TimeRange.HOUR_1.bounds()
    if start is None or end is None:
        raise InvalidRangeException("Both start and end are required when range is not given")
    if start > end:
        raise InvalidRangeException(f"start ({start}) must not be after end ({end})")
    return start, end


# ============================================================================
# Live Sample
# ============================================================================

@router.get("/usage/current", response_model=CurrentPowerResponse)
async def get_current_usage(
    limit: int = Query(10, ge=1, le=100, description="Number of top apps to return"),
    manager: UsageManager = Depends(get_usage_manager)
):
    """
    Latest combined sample: total power and the top apps by relative impact.

    **Returns:** Empty fields until the first tick has completed.
    """
    sample = manager.latest_sample
    if sample is None:
        return CurrentPowerResponse(running=manager.is_running)

    return CurrentPowerResponse(
        running=manager.is_running,
        total_power=sample.total_power,
        top_apps=sample.top_apps(limit),
        sum_estimated_watts=sample.sum_estimated_watts,
    )


# ============================================================================
# Minute Buckets
# ============================================================================

@router.get("/usage/buckets", response_model=MinuteBucketsResponse)
async def get_minute_buckets(
    start: Optional[int] = Query(None, description="Start (unix seconds, inclusive)"),
    end: Optional[int] = Query(None, description="End (unix seconds, inclusive)"),
    range: Optional[TimeRange] = Query(None, description="Predefined window (15m, 1h, 6h, 24h)"),
    manager: UsageManager = Depends(get_usage_manager)
):
    """Total-power minute buckets, oldest first."""
    start, end = resolve_range(start, end, range)
    buckets = await asyncio.wrap_future(manager.store.minute_buckets(start, end))
    return MinuteBucketsResponse(start=start, end=end, buckets=buckets)


@router.get("/usage/apps/buckets", response_model=AppMinuteBucketsResponse)
async def get_app_minute_buckets(
    start: Optional[int] = Query(None, description="Start (unix seconds, inclusive)"),
    end: Optional[int] = Query(None, description="End (unix seconds, inclusive)"),
    range: Optional[TimeRange] = Query(None, description="Predefined window (15m, 1h, 6h, 24h)"),
    bundle_id: Optional[str] = Query(None, description="Restrict to one application"),
    manager: UsageManager = Depends(get_usage_manager)
):
    """Per-app minute buckets ordered by time, then energy (highest first)."""
    start, end = resolve_range(start, end, range)
    buckets = await asyncio.wrap_future(manager.store.app_minute_buckets(start, end, bundle_id))
    return AppMinuteBucketsResponse(start=start, end=end, bundle_id=bundle_id, buckets=buckets)


@router.get("/usage/apps/summary", response_model=AppSummariesResponse)
async def get_app_summaries(
    start: Optional[int] = Query(None, description="Start (unix seconds, inclusive)"),
    end: Optional[int] = Query(None, description="End (unix seconds, inclusive)"),
    range: Optional[TimeRange] = Query(None, description="Predefined window (15m, 1h, 6h, 24h)"),
    manager: UsageManager = Depends(get_usage_manager)
):
    """
    Per-app totals over the range, highest energy first.

    **Returns:** energy (Wh), average and peak watts, active minutes and cumulative relative score.
    """
    start, end = resolve_range(start, end, range)
    summaries = await asyncio.wrap_future(manager.store.app_summaries(start, end))
    return AppSummariesResponse(start=start, end=end, summaries=summaries)


# ============================================================================
# Maintenance
# ============================================================================

@router.put("/usage/retention", response_model=RetentionResponse)
async def set_retention(
    request: RetentionRequest,
    manager: UsageManager = Depends(get_usage_manager)
):
    """Set the retention window and prune rows older than it immediately."""
    deleted = await asyncio.wrap_future(manager.set_retention_period(request.period))
    return RetentionResponse(period=manager.store.retention, rows_deleted=deleted)


@router.post("/usage/flush", response_model=FlushResponse)
async def flush_current_minute(manager: UsageManager = Depends(get_usage_manager)):
    """Persist the open minute now without waiting for the boundary."""
    future = manager.force_flush()
    if future is None:
        return FlushResponse(status="nothing_to_flush")
    await asyncio.wrap_future(future)
    return FlushResponse()


@router.get("/usage/coefficients", response_model=CoefficientsResponse)
def get_coefficients(manager: UsageManager = Depends(get_usage_manager)):
    provider = manager.coefficients
    coefficients = provider.load()
    return CoefficientsResponse(
        coefficients=coefficients,
        loaded_from_system=provider.loaded_from_system,
        custom=provider.custom is not None,
    )


@router.post("/usage/coefficients/reload", response_model=CoefficientsResponse)
def reload_coefficients(manager: UsageManager = Depends(get_usage_manager)):
    provider = manager.coefficients
    coefficients = provider.force_reload()
    logger.info(f"Coefficients reloaded: {coefficients}")
    return CoefficientsResponse(
        coefficients=coefficients,
        loaded_from_system=provider.loaded_from_system,
        custom=provider.custom is not None,
    )
