"""
Energy Impact Engine - Normalized per-application impact scores.

Samples are grouped by application (helper processes share their parent's
identifier). For each group, every raw metric is expressed as a share of the
system-wide total for that tick and the shares are combined with the active
coefficients. Scores are left un-normalized; attribution divides by their sum.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from powerwatt.models.energy import EnergyCoefficients, EnergyImpactSample, FeatureShares
from powerwatt.models.process import ProcessMetricsSample


@dataclass
class _GroupTotals:
    app_name: Optional[str] = None
    cpu_seconds: float = 0.0
    wakeups: int = 0
    disk_bytes: int = 0
    network_bytes: int = 0


def _share(value: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, value / total))


class EnergyImpactEngine:
    """Stateless converter from process deltas to impact scores."""

    @staticmethod
    def group(samples: List[ProcessMetricsSample]) -> Dict[str, _GroupTotals]:
        groups: Dict[str, _GroupTotals] = {}
        for sample in samples:
            totals = groups.setdefault(sample.group_key, _GroupTotals())
            if totals.app_name is None:
                totals.app_name = sample.app_name
            totals.cpu_seconds += sample.cpu_time_delta_seconds
            totals.wakeups += sample.wakeups_delta
            totals.disk_bytes += sample.total_disk_bytes
            totals.network_bytes += sample.total_network_bytes
        return groups

    def feature_shares(self, samples: List[ProcessMetricsSample]) -> List[FeatureShares]:
        """Per-group share of each feature total; 0 where a total is 0."""
        groups = self.group(samples)

        total_cpu = sum(g.cpu_seconds for g in groups.values())
        total_wakeups = sum(g.wakeups for g in groups.values())
        total_disk = sum(g.disk_bytes for g in groups.values())
        total_network = sum(g.network_bytes for g in groups.values())

        return [
            FeatureShares(
                bundle_id=key,
                app_name=g.app_name,
                cpu_share=_share(g.cpu_seconds, total_cpu),
                wakeups_share=_share(g.wakeups, total_wakeups),
                disk_share=_share(g.disk_bytes, total_disk),
                network_share=_share(g.network_bytes, total_network),
            )
            for key, g in groups.items()
        ]

    def compute(
        self,
        samples: List[ProcessMetricsSample],
        coefficients: EnergyCoefficients,
        timestamp: Optional[datetime] = None
    ) -> EnergyImpactSample:
        timestamp = timestamp or datetime.now(timezone.utc)
        if not samples:
            return EnergyImpactSample.empty(timestamp)

        scores: Dict[str, float] = {}
        names: Dict[str, str] = {}
        for shares in self.feature_shares(samples):
            scores[shares.bundle_id] = coefficients.compute_score(shares)
            if shares.app_name:
                names[shares.bundle_id] = shares.app_name

        return EnergyImpactSample(timestamp=timestamp, per_app_scores=scores, per_app_meta=names)
