"""
Data models for the usage-tracking pipeline.
"""

from powerwatt.models.energy import (
    DEFAULT_COEFFICIENTS,
    EnergyCoefficients,
    EnergyImpactSample,
    FeatureShares,
)
from powerwatt.models.power import (
    MAX_VALID_WATTS,
    AppPowerSample,
    CombinedPowerSample,
    TotalPowerSample,
    TotalPowerSource,
    UnavailableReason,
)
from powerwatt.models.process import (
    ProcessMetricsSample,
    ProcessResourceUsage,
    RunningAppInfo,
)
from powerwatt.models.usage import (
    AppMinuteBucket,
    AppPowerSummary,
    MinuteBucket,
    RetentionPeriod,
    TimeRange,
    floor_to_minute,
)

__all__ = [
    "DEFAULT_COEFFICIENTS",
    "EnergyCoefficients",
    "EnergyImpactSample",
    "FeatureShares",
    "MAX_VALID_WATTS",
    "AppPowerSample",
    "CombinedPowerSample",
    "TotalPowerSample",
    "TotalPowerSource",
    "UnavailableReason",
    "ProcessMetricsSample",
    "ProcessResourceUsage",
    "RunningAppInfo",
    "AppMinuteBucket",
    "AppPowerSummary",
    "MinuteBucket",
    "RetentionPeriod",
    "TimeRange",
    "floor_to_minute",
]
