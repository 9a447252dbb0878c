"""
Power Data Models - Total system power and per-app power allocation.

This module defines Pydantic models for:
- Total system power readings (one per poll)
- Per-application power allocation
- The combined sample published by the attribution engine every tick
All field names follow unit-explicit naming convention.
"""

from typing import List, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from powerwatt.models.energy import EnergyImpactSample

# Readings outside this range are never trusted as total system power.
MAX_VALID_WATTS = 200.0


class TotalPowerSource(str, Enum):
    """Where a total power reading came from."""
    MEASURED = "measured"
    DERIVED = "derived"
    UNAVAILABLE = "unavailable"


class UnavailableReason(str, Enum):
    """Why no total power reading could be trusted."""
    NO_BATTERY_DATA = "no_battery_data"
    AC_FULLY_CHARGED = "ac_fully_charged"
    NOT_DISCHARGING = "not_discharging"
    OUT_OF_RANGE = "out_of_range"
    SENSOR_TIMEOUT = "sensor_timeout"


# ============================================================================
# Total Power
# ============================================================================

class TotalPowerSample(BaseModel):
    """
    A single total system power reading.

    Produced once per poll by the power reader; never persisted directly.
    """
    timestamp: datetime = Field(..., description="Reading timestamp (UTC)")
    total_watts: Optional[float] = Field(None, description="Total system power in watts")
    adapter_watts: Optional[float] = Field(None, description="Power adapter rating/draw in watts")
    is_on_ac: bool = Field(False, description="Whether external power is connected")
    battery_percent: Optional[float] = Field(None, ge=0, description="Battery charge (0-100)")
    source: TotalPowerSource = Field(TotalPowerSource.UNAVAILABLE, description="Measurement source")
    unavailable_reason: Optional[UnavailableReason] = Field(None, description="Set when source is unavailable")

    # Diagnostic only
    battery_voltage_volts: Optional[float] = Field(None, description="Battery voltage in volts")
    battery_current_amperes: Optional[float] = Field(None, description="Absolute battery current in amperes")

    @property
    def has_valid_watts(self) -> bool:
        """Whether total_watts can be used for attribution and energy accounting."""
        if self.total_watts is None or self.source == TotalPowerSource.UNAVAILABLE:
            return False
        return 0.0 <= self.total_watts <= MAX_VALID_WATTS

    @classmethod
    def unavailable(cls, timestamp: datetime, reason: UnavailableReason, **fields) -> "TotalPowerSample":
        """Build a sample that carries no usable watts."""
        return cls(
            timestamp=timestamp,
            total_watts=None,
            adapter_watts=None,
            source=TotalPowerSource.UNAVAILABLE,
            unavailable_reason=reason,
            **fields
        )


# ============================================================================
# Per-App Allocation
# ============================================================================

class AppPowerSample(BaseModel):
    """Allocated power for a single application at one point in time."""
    timestamp: datetime = Field(..., description="Sample timestamp (UTC)")
    bundle_id: str = Field(..., description="Stable application identifier")
    app_name: Optional[str] = Field(None, description="Display name")
    estimated_watts: Optional[float] = Field(None, ge=0, description="Estimated power in watts")
    relative_score: float = Field(0.0, ge=0, le=1, description="Normalized energy impact (0-1)")

    def energy_mwh(self, interval_seconds: float) -> Optional[float]:
        """Energy in mWh over an interval, or None when watts are unknown."""
        if self.estimated_watts is None:
            return None
        return self.estimated_watts * (interval_seconds / 3600.0) * 1000.0


class CombinedPowerSample(BaseModel):
    """
    Total power joined with per-app allocation.

    Published by the attribution engine once per polling interval.
    """
    timestamp: datetime = Field(..., description="Sample timestamp (UTC)")
    total_power: TotalPowerSample
    app_power: List[AppPowerSample] = Field(default_factory=list)
    energy_impact: EnergyImpactSample

    @property
    def has_valid_total_watts(self) -> bool:
        return self.total_power.has_valid_watts

    @property
    def sum_estimated_watts(self) -> Optional[float]:
        """Sum of per-app watts; approximately total_watts when known."""
        if not self.has_valid_total_watts:
            return None
        return sum(app.estimated_watts for app in self.app_power if app.estimated_watts is not None)

    def top_apps(self, n: int = 10) -> List[AppPowerSample]:
        return self.app_power[:n]
