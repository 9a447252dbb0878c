"""
Response Models - API response structures for the query interface.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from powerwatt.models.energy import EnergyCoefficients
from powerwatt.models.power import AppPowerSample, TotalPowerSample
from powerwatt.models.usage import AppMinuteBucket, AppPowerSummary, MinuteBucket, RetentionPeriod


class BaseResponse(BaseModel):
    """Base model included in all API responses."""
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Timestamp of the response in UTC.")


# ============================================================================
# Error Response Models
# ============================================================================

class ErrorDetail(BaseModel):
    code: str = Field(..., description="Error code (e.g., INVALID_RANGE, VALIDATION_ERROR)")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[str] = Field(None, description="Additional error details or context")


class ErrorResponse(BaseResponse):
    error: ErrorDetail = Field(..., description="Error details")


# ============================================================================
# Usage Responses
# ============================================================================

class CurrentPowerResponse(BaseResponse):
    """Latest combined sample, or an empty response before the first tick."""
    running: bool = Field(..., description="Whether the sampling loop is running")
    total_power: Optional[TotalPowerSample] = None
    top_apps: List[AppPowerSample] = Field(default_factory=list)
    sum_estimated_watts: Optional[float] = None


class MinuteBucketsResponse(BaseResponse):
    start: int
    end: int
    buckets: List[MinuteBucket] = Field(default_factory=list)


class AppMinuteBucketsResponse(BaseResponse):
    start: int
    end: int
    bundle_id: Optional[str] = None
    buckets: List[AppMinuteBucket] = Field(default_factory=list)


class AppSummariesResponse(BaseResponse):
    start: int
    end: int
    summaries: List[AppPowerSummary] = Field(default_factory=list)


class RetentionRequest(BaseModel):
    period: RetentionPeriod = Field(..., description="Retention window (6h, 24h, 7d)")


class RetentionResponse(BaseResponse):
    period: RetentionPeriod
    rows_deleted: int = Field(0, ge=0)


class FlushResponse(BaseResponse):
    status: str = "flushed"


class CoefficientsResponse(BaseResponse):
    coefficients: EnergyCoefficients
    loaded_from_system: bool
    custom: bool


# ============================================================================
# System Responses
# ============================================================================

class HealthResponse(BaseResponse):
    status: str
    version: str
    pipeline: Dict[str, Any] = Field(default_factory=dict)
