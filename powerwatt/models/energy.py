"""
Energy Impact Models - Coefficients, feature shares and impact scores.

The energy impact score is a unitless weighted combination of an app's share of
CPU time, wakeups, disk I/O and network I/O during one sampling tick.
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime
from pydantic import BaseModel, Field


class EnergyCoefficients(BaseModel):
    """Weights used to combine feature shares into an energy impact score."""
    cpu_weight: float = Field(0.70, ge=0, description="Weight for CPU time share")
    wakeups_weight: float = Field(0.10, ge=0, description="Weight for wakeups share")
    disk_weight: float = Field(0.15, ge=0, description="Weight for disk I/O share")
    network_weight: float = Field(0.05, ge=0, description="Weight for network I/O share")

    model_config = {"frozen": True}

    @property
    def total_weight(self) -> float:
        return self.cpu_weight + self.wakeups_weight + self.disk_weight + self.network_weight

    @property
    def is_valid(self) -> bool:
        """Weights must sum to 1.0 (within 0.001)."""
        return abs(self.total_weight - 1.0) < 0.001

    def compute_score(self, shares: "FeatureShares") -> float:
        return (
            self.cpu_weight * shares.cpu_share
            + self.wakeups_weight * shares.wakeups_share
            + self.disk_weight * shares.disk_share
            + self.network_weight * shares.network_share
        )

    def __str__(self) -> str:
        return (
            f"EnergyCoefficients(cpu: {self.cpu_weight}, wakeups: {self.wakeups_weight}, "
            f"disk: {self.disk_weight}, network: {self.network_weight})"
        )


DEFAULT_COEFFICIENTS = EnergyCoefficients()


class FeatureShares(BaseModel):
    """One application's fraction of each system-wide metric total for a tick."""
    bundle_id: str
    app_name: Optional[str] = None
    cpu_share: float = Field(0.0, ge=0, le=1)
    wakeups_share: float = Field(0.0, ge=0, le=1)
    disk_share: float = Field(0.0, ge=0, le=1)
    network_share: float = Field(0.0, ge=0, le=1)


class EnergyImpactSample(BaseModel):
    """
    Per-app raw energy impact scores for one sampling interval.

    Scores are not normalized here; the attribution engine divides by their sum.
    """
    timestamp: datetime
    per_app_scores: Dict[str, float] = Field(default_factory=dict, description="bundle_id -> raw score")
    per_app_meta: Dict[str, str] = Field(default_factory=dict, description="bundle_id -> display name")

    @property
    def total_score(self) -> float:
        return sum(self.per_app_scores.values())

    def score(self, bundle_id: str) -> float:
        return self.per_app_scores.get(bundle_id, 0.0)

    def app_name(self, bundle_id: str) -> Optional[str]:
        return self.per_app_meta.get(bundle_id)

    def top_apps(self, n: int) -> List[Tuple[str, float, Optional[str]]]:
        ranked = sorted(self.per_app_scores.items(), key=lambda item: item[1], reverse=True)
        return [(bundle_id, score, self.per_app_meta.get(bundle_id)) for bundle_id, score in ranked[:n]]

    @classmethod
    def empty(cls, timestamp: datetime) -> "EnergyImpactSample":
        return cls(timestamp=timestamp)
