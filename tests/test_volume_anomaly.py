from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from pm_arb.schemas import PriceSnapshot
from pm_arb.volume.anomaly import VolumeAnomalyDetector, VolumeStats, spike_metrics, volume_stats

T0 = datetime(2026, 1, 10, tzinfo=timezone.utc)


def snap(at, volume, id_=None, market_id=1):
    return PriceSnapshot(id=id_, market_id=market_id, snapshot_at=at, yes_price=0.5, no_price=0.5, volume_24h=volume)


def test_stats_use_sample_std():
    s = volume_stats(pd.Series([1000.0, 2000.0, 3000.0]))
    assert s.mean == pytest.approx(2000.0)
    assert s.std == pytest.approx(1000.0)
    assert volume_stats(pd.Series([], dtype=float)) is None
    assert volume_stats(pd.Series([5.0])).std == 0.0


def test_spike_metrics():
    assert spike_metrics(3000.0, VolumeStats(mean=1000.0, std=500.0, count=3)) == pytest.approx((3.0, 4.0))
    assert spike_metrics(3000.0, VolumeStats(mean=1000.0, std=0.0, count=3)) == pytest.approx((3.0, 0.0))
    assert spike_metrics(3000.0, VolumeStats(mean=0.0, std=0.0, count=3)) is None


def test_alert_on_spike_above_threshold():
    det = VolumeAnomalyDetector(min_volume_usd=1000.0)
    det.prime(1, [(T0 - timedelta(days=d), 10_000.0 + 1000.0 * (d % 2)) for d in range(1, 7)])
    alert = det.observe(snap(T0, 30_000.0, id_=55))
    assert alert is not None
    assert alert.snapshot_id == 55
    assert alert.rolling_avg_7d == pytest.approx(10_500.0)
    assert alert.multiplier == pytest.approx(30_000.0 / 10_500.0)
    assert alert.z_score > 0
    assert alert.alert_at == T0


def test_baseline_excludes_current_snapshot():
    det = VolumeAnomalyDetector(min_volume_usd=0.0)
    det.prime(1, [(T0 - timedelta(hours=2), 1000.0), (T0 - timedelta(hours=1), 1000.0)])
    alert = det.observe(snap(T0, 1500.0))
    assert alert is not None
    assert alert.rolling_avg_7d == 1000.0
    assert alert.multiplier == pytest.approx(1.5)


def test_no_alert_below_threshold_or_noise_floor():
    det = VolumeAnomalyDetector(min_volume_usd=1000.0)
    det.prime(1, [(T0 - timedelta(hours=h), 1000.0) for h in (1, 2, 3)])
    assert det.observe(snap(T0, 1400.0)) is None
    det = VolumeAnomalyDetector(min_volume_usd=1000.0)
    det.prime(1, [(T0 - timedelta(hours=h), 100.0) for h in (1, 2, 3)])
    assert det.observe(snap(T0, 900.0)) is None


def test_requires_minimum_history():
    det = VolumeAnomalyDetector(min_history=2, min_volume_usd=0.0)
    assert det.observe(snap(T0, 100.0)) is None
    assert det.observe(snap(T0 + timedelta(hours=1), 10_000.0)) is None
    assert det.observe(snap(T0 + timedelta(hours=2), 100_000.0)) is not None


def test_zero_mean_baseline_never_alerts():
    det = VolumeAnomalyDetector(min_volume_usd=0.0)
    det.prime(1, [(T0 - timedelta(hours=h), 0.0) for h in (1, 2, 3)])
    assert det.observe(snap(T0, 5000.0)) is None


def test_old_points_fall_out_of_window():
    det = VolumeAnomalyDetector(min_volume_usd=0.0)
    det.prime(1, [(T0 - timedelta(days=10), 1_000_000.0), (T0 - timedelta(days=1), 1000.0), (T0 - timedelta(hours=1), 1000.0)])
    stats = det.rolling_stats(1, T0)
    assert stats.count == 2
    assert stats.mean == 1000.0


def test_same_snapshot_never_alerts_twice():
    det = VolumeAnomalyDetector(min_volume_usd=0.0)
    det.prime(1, [(T0 - timedelta(hours=h), 1000.0) for h in (1, 2)])
    assert det.observe(snap(T0, 5000.0, id_=1)) is not None
    assert det.observe(snap(T0, 5000.0, id_=1)) is None


def test_repeated_spikes_on_new_snapshots_repeat_alerts():
    det = VolumeAnomalyDetector(min_volume_usd=0.0)
    det.prime(1, [(T0 - timedelta(hours=h), 1000.0) for h in (1, 2, 3, 4)])
    assert det.observe(snap(T0, 5000.0)) is not None
    assert det.observe(snap(T0 + timedelta(minutes=5), 8000.0)) is not None


def test_daily_buckets_collapse_intraday_points():
    det = VolumeAnomalyDetector(min_volume_usd=0.0, bucket="daily")
    day1 = T0 - timedelta(days=2)
    day2 = T0 - timedelta(days=1)
    det.prime(1, [(day1, 100.0), (day1 + timedelta(hours=1), 1000.0), (day2, 3000.0)])
    stats = det.rolling_stats(1, T0)
    assert stats.count == 2
    assert stats.mean == pytest.approx(2000.0)


def test_thin_baseline_average_never_alerts():
    det = VolumeAnomalyDetector(min_volume_usd=1000.0, min_avg_usd=100.0)
    det.prime(1, [(T0 - timedelta(hours=h), 50.0) for h in (1, 2, 3)])
    assert det.observe(snap(T0, 5000.0)) is None

    det = VolumeAnomalyDetector(min_volume_usd=1000.0, min_avg_usd=100.0)
    det.prime(1, [(T0 - timedelta(hours=h), 500.0) for h in (1, 2, 3)])
    alert = det.observe(snap(T0, 5000.0))
    assert alert is not None
    assert alert.multiplier == pytest.approx(10.0)
