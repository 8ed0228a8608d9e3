"""Volume spike detection against a trailing rolling baseline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Literal

import numpy as np
import pandas as pd
import structlog

from pm_arb.config import Settings
from pm_arb.schemas import PriceSnapshot, VolumeAlert

log = structlog.get_logger(__name__)

Bucket = Literal["snapshot", "daily"]


@dataclass(frozen=True)
class VolumeStats:
    mean: float
    std: float
    count: int


def volume_stats(volumes: pd.Series) -> VolumeStats | None:
    """Mean and sample standard deviation of a baseline; None when empty."""
    arr = volumes.dropna().to_numpy(dtype=float)
    if arr.size == 0:
        return None
    mean = float(np.mean(arr))
    std = float(np.std(arr, ddof=1)) if arr.size > 1 else 0.0
    return VolumeStats(mean=mean, std=std, count=int(arr.size))


def spike_metrics(current: float, stats: VolumeStats) -> tuple[float, float] | None:
    """(multiplier, z_score) for the current volume, or None if the baseline mean is not positive."""
    if not stats.mean > 0:
        return None
    multiplier = current / stats.mean
    z_score = (current - stats.mean) / stats.std if stats.std > 0 else 0.0
    return multiplier, z_score


class VolumeAnomalyDetector:
    """Keeps a trailing window of 24h volume per market and flags spikes.

    The baseline for a snapshot is every observation strictly before it within
    the window, optionally collapsed to one value per UTC day.
    """

    def __init__(
        self,
        window: timedelta = timedelta(days=7),
        alert_threshold: float = 1.5,
        min_volume_usd: float = 0.0,
        min_avg_usd: float = 0.0,
        min_history: int = 2,
        bucket: Bucket = "snapshot",
    ):
        self.window = window
        self.alert_threshold = alert_threshold
        self.min_volume_usd = min_volume_usd
        self.min_avg_usd = min_avg_usd
        self.min_history = min_history
        self.bucket = bucket
        self._history: dict[int, pd.Series] = {}

    @classmethod
    def from_settings(cls, s: Settings) -> "VolumeAnomalyDetector":
        return cls(
            window=timedelta(days=s.volume_window_days),
            alert_threshold=s.volume_alert_threshold,
            min_volume_usd=s.volume_min_usd,
            min_avg_usd=s.volume_min_avg_usd,
            min_history=s.volume_min_history,
            bucket=s.volume_baseline_bucket,
        )

    def has_history(self, market_id: int) -> bool:
        return market_id in self._history

    def prime(self, market_id: int, history: Iterable[tuple[datetime, float]]) -> None:
        """Seed a market's window from stored observations."""
        points = list(history)
        if points:
            idx = pd.DatetimeIndex([pd.Timestamp(ts) for ts, _ in points])
            s = pd.Series([float(v) for _, v in points], index=idx, dtype=float)
            s = s[~s.index.duplicated(keep="last")].sort_index()
        else:
            s = pd.Series(dtype=float, index=pd.DatetimeIndex([]))
        self._history[market_id] = s

    def _baseline(self, series: pd.Series, at: pd.Timestamp) -> pd.Series:
        if series.empty:
            return series
        window = series[(series.index >= at - self.window) & (series.index < at)]
        if self.bucket == "daily" and not window.empty:
            window = window.resample("1D").last().dropna()
        return window

    def rolling_stats(self, market_id: int, at: datetime) -> VolumeStats | None:
        series = self._history.get(market_id)
        if series is None:
            return None
        return volume_stats(self._baseline(series, pd.Timestamp(at)))

    def observe(self, snapshot: PriceSnapshot) -> VolumeAlert | None:
        """Feed one new snapshot; returns an alert when its volume spikes above the baseline."""
        at = pd.Timestamp(snapshot.snapshot_at)
        series = self._history.get(snapshot.market_id)
        if series is None:
            series = pd.Series(dtype=float, index=pd.DatetimeIndex([]))
        elif not series.empty and at <= series.index[-1]:
            log.debug("volume_snapshot_already_seen", market_id=snapshot.market_id, snapshot_at=str(at))
            return None

        baseline = self._baseline(series, at)
        current = float(snapshot.volume_24h)

        point = pd.Series([current], index=pd.DatetimeIndex([at]), dtype=float)
        appended = point if series.empty else pd.concat([series, point])
        self._history[snapshot.market_id] = appended[appended.index >= at - self.window]

        if len(baseline) < self.min_history:
            return None
        stats = volume_stats(baseline)
        if stats is None:
            return None
        metrics = spike_metrics(current, stats)
        if metrics is None:
            return None
        multiplier, z_score = metrics
        if multiplier < self.alert_threshold or current < self.min_volume_usd or stats.mean < self.min_avg_usd:
            return None

        log.info(
            "volume_spike_detected",
            market_id=snapshot.market_id,
            volume_usd=current,
            rolling_avg=stats.mean,
            multiplier=round(multiplier, 3),
            z_score=round(z_score, 3),
        )
        return VolumeAlert(
            market_id=snapshot.market_id,
            snapshot_id=snapshot.id,
            volume_usd=current,
            rolling_avg_7d=stats.mean,
            rolling_stddev_7d=stats.std,
            multiplier=multiplier,
            z_score=z_score,
            alert_at=snapshot.snapshot_at,
        )
