"""
System API - Health, version and metrics endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from typing import Optional
import sys

from powerwatt import __version__
from powerwatt.deps import get_optional_usage_manager
from powerwatt.middleware import get_metrics_text, get_metrics_content_type
from powerwatt.models.responses import HealthResponse
from powerwatt.services.usage_manager import UsageManager

router = APIRouter()


@router.get("/system/health", response_model=HealthResponse)
async def health_check(manager: Optional[UsageManager] = Depends(get_optional_usage_manager)):
    """
    Health of the service and the sampling pipeline.

    **Returns:** `healthy` when the pipeline is running, `degraded` when the
    service is up but tracking is disabled or stopped.
    """
    if manager is None:
        return HealthResponse(status="degraded", version=__version__, pipeline={"running": False})

    latest = manager.latest_sample
    pipeline = {
        "running": manager.is_running,
        "interval_seconds": manager.engine.interval_seconds,
        "store_available": manager.store.available,
        "retention": manager.store.retention.value,
        "last_sample_at": latest.timestamp.isoformat() if latest else None,
        "power_source": latest.total_power.source.value if latest else None,
    }
    status = "healthy" if manager.is_running and manager.store.available else "degraded"
    return HealthResponse(status=status, version=__version__, pipeline=pipeline)


@router.get("/system/version")
async def get_version():
    """API version, Python version and key dependencies."""
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

    return {
        "api_version": __version__,
        "python_version": python_version,
        "platform": sys.platform,
    }


@router.get("/system/metrics")
async def get_metrics():
    """Prometheus text-format metrics for the API and the sampling pipeline."""
    return Response(content=get_metrics_text(), media_type=get_metrics_content_type())
