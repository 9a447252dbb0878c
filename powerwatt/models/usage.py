"""
Usage Data Models - Persisted minute buckets and on-demand summaries.

This module defines:
- MinuteBucket / AppMinuteBucket: one row per minute (and per app)
- AppPowerSummary: aggregate over an arbitrary time range
- RetentionPeriod / TimeRange: supported windows
"""

from typing import Optional, Tuple
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field

SECONDS_PER_MINUTE = 60


def floor_to_minute(timestamp: datetime) -> int:
    """Unix timestamp of the start of the minute containing `timestamp`."""
    ts = int(timestamp.timestamp())
    return ts - (ts % SECONDS_PER_MINUTE)


# ============================================================================
# Windows
# ============================================================================

class RetentionPeriod(str, Enum):
    """How long persisted buckets are kept."""
    HOURS_6 = "6h"
    HOURS_24 = "24h"
    DAYS_7 = "7d"

    @property
    def seconds(self) -> int:
        return {
            RetentionPeriod.HOURS_6: 6 * 3600,
            RetentionPeriod.HOURS_24: 24 * 3600,
            RetentionPeriod.DAYS_7: 7 * 24 * 3600,
        }[self]

    @property
    def title(self) -> str:
        return {
            RetentionPeriod.HOURS_6: "6 hours",
            RetentionPeriod.HOURS_24: "24 hours",
            RetentionPeriod.DAYS_7: "7 days",
        }[self]


class TimeRange(str, Enum):
    """Predefined query windows ending at the close of the current minute."""
    MINUTES_15 = "15m"
    HOUR_1 = "1h"
    HOURS_6 = "6h"
    HOURS_24 = "24h"

    @property
    def minutes(self) -> int:
        return {
            TimeRange.MINUTES_15: 15,
            TimeRange.HOUR_1: 60,
            TimeRange.HOURS_6: 360,
            TimeRange.HOURS_24: 1440,
        }[self]

    def bounds(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """(start, end) unix bounds; end is the end of the current minute."""
        now = now or datetime.now(timezone.utc)
        end = floor_to_minute(now) + SECONDS_PER_MINUTE
        return end - self.minutes * SECONDS_PER_MINUTE, end


# ============================================================================
# Persisted Buckets
# ============================================================================

class MinuteBucket(BaseModel):
    """Total power accumulated over one minute."""
    ts_minute: int = Field(..., description="Unix timestamp floored to the minute")
    total_mwh: float = Field(0.0, ge=0, description="Total energy in mWh")
    total_watts_avg: Optional[float] = Field(None, description="Average watts across samples")
    is_on_ac: bool = Field(False, description="Last seen AC state")
    battery_percent: Optional[float] = Field(None, description="Last seen battery percent")
    samples_count: int = Field(1, ge=0, description="Number of upserts merged into this row")


class AppMinuteBucket(BaseModel):
    """Power attributed to one application over one minute."""
    ts_minute: int = Field(..., description="Unix timestamp floored to the minute")
    bundle_id: str = Field(..., description="Stable application identifier")
    app_name: Optional[str] = Field(None, description="Display name")
    mwh: float = Field(0.0, ge=0, description="Energy in mWh")
    watts_avg: Optional[float] = Field(None, description="Average watts across samples")
    relative_impact_sum: float = Field(0.0, ge=0, description="Sum of relative impact scores")
    samples_count: int = Field(1, ge=0, description="Number of upserts merged into this row")


class AppPowerSummary(BaseModel):
    """Read-only aggregate of one application over a time range."""
    bundle_id: str
    app_name: Optional[str] = None
    energy_wh: float = Field(0.0, description="Total energy in Wh")
    avg_watts: Optional[float] = Field(None, description="Mean of per-minute average watts")
    peak_watts: Optional[float] = Field(None, description="Max of per-minute average watts")
    active_minutes: int = Field(0, ge=0, description="Distinct minutes with activity")
    total_relative_score: float = Field(0.0, description="Cumulative relative impact")

    @property
    def energy_mwh(self) -> float:
        return self.energy_wh * 1000.0
