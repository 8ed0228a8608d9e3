from __future__ import annotations

import math
from dataclasses import dataclass

from pm_arb.config import Settings
from pm_arb.schemas import ArbQuality


@dataclass(frozen=True)
class ClassifierThresholds:
    min_executable_spread_pct: float = 2.0
    min_executable_size_usd: float = 1000.0

    @classmethod
    def from_settings(cls, s: Settings) -> "ClassifierThresholds":
        return cls(
            min_executable_spread_pct=s.min_executable_spread_pct,
            min_executable_size_usd=s.min_executable_size_usd,
        )


def classify(net_spread_pct: float, max_deployable_usd: float, thresholds: ClassifierThresholds) -> ArbQuality | None:
    """Quality tier for a net spread; None means not an opportunity."""
    if not math.isfinite(net_spread_pct) or net_spread_pct <= 0:
        return None
    if net_spread_pct < thresholds.min_executable_spread_pct:
        return ArbQuality.THEORETICAL
    if max_deployable_usd >= thresholds.min_executable_size_usd:
        return ArbQuality.EXECUTABLE
    return ArbQuality.THIN
