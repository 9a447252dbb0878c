"""
Services for the usage-tracking pipeline.
"""

from powerwatt.services.aggregator import MinuteBucketAggregator
from powerwatt.services.attribution import PowerAttributionEngine, SampleChannel, attribute
from powerwatt.services.coefficients import CoefficientProvider
from powerwatt.services.energy_impact import EnergyImpactEngine
from powerwatt.services.usage_manager import UsageManager

__all__ = [
    "MinuteBucketAggregator",
    "PowerAttributionEngine",
    "SampleChannel",
    "attribute",
    "CoefficientProvider",
    "EnergyImpactEngine",
    "UsageManager",
]
