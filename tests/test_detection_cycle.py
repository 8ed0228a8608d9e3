"""Detection runs against an in-memory store."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pm_arb.config import Settings
from pm_arb.detection.cycle import DetectionCycle
from pm_arb.errors import RunAlreadyActiveError
from pm_arb.fees import DEFAULT_FEE_SCHEDULES, FeeConfig
from pm_arb.normalization import RawPriceRecord, normalize_snapshot
from pm_arb.repo.base import DetectionStore
from pm_arb.schemas import (
    ArbOpportunity,
    ArbQuality,
    ArbType,
    Market,
    MarketPair,
    MarketStatus,
    PairStatus,
    Platform,
    PriceSnapshot,
    ResolutionReason,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
POLY_ID, KALSHI_ID, PAIR_ID = 1, 2, 10


class FakeStore(DetectionStore):
    def __init__(self, markets, pairs=(), snapshots=None, history=None, fee_config=None, opportunities=()):
        self.markets = {m.id: m for m in markets}
        self.pairs = list(pairs)
        self.snapshots = dict(snapshots or {})
        self.history = history or {}
        self.fee_config = fee_config or FeeConfig.from_schedules(DEFAULT_FEE_SCHEDULES)
        self.rows: list[ArbOpportunity] = list(opportunities)
        self.alerts = []
        self.runs: dict[int, str] = {}
        self.delays: dict[int, float] = {}
        self.last_stats = None
        self.last_error = None

    async def list_markets(self):
        return list(self.markets.values())

    async def latest_snapshot(self, market_id):
        if market_id in self.delays:
            await asyncio.sleep(self.delays[market_id])
        return self.snapshots.get(market_id)

    async def volume_history(self, market_id, since, until):
        return [(t, v) for t, v in self.history.get(market_id, []) if since <= t < until]

    async def confirmed_pairs(self):
        return [p for p in self.pairs if p.status is PairStatus.CONFIRMED]

    async def load_fee_config(self):
        return self.fee_config

    async def load_active_opportunities(self):
        return [r for r in self.rows if r.is_active]

    async def upsert_opportunity(self, record):
        for i, r in enumerate(self.rows):
            if r.is_active and r.key == record.key:
                self.rows[i] = record.model_copy(update={"id": r.id})
                return r.id
        new_id = len(self.rows) + 1
        self.rows.append(record.model_copy(update={"id": new_id}))
        return new_id

    async def resolve_opportunity(self, record):
        for i, r in enumerate(self.rows):
            if r.is_active and r.key == record.key:
                self.rows[i] = r.model_copy(
                    update={"resolved_at": record.resolved_at, "resolution_reason": record.resolution_reason}
                )

    async def append_volume_alert(self, alert):
        if any(a.market_id == alert.market_id and a.snapshot_id == alert.snapshot_id for a in self.alerts):
            return False
        self.alerts.append(alert)
        return True

    async def is_run_active(self, run_type):
        return "running" in self.runs.values()

    async def mark_run_started(self, run_type):
        if await self.is_run_active(run_type):
            raise RunAlreadyActiveError(run_type, 1)
        run_id = len(self.runs) + 1
        self.runs[run_id] = "running"
        return run_id

    async def mark_run_completed(self, run_id, stats):
        self.runs[run_id] = "completed"
        self.last_stats = stats

    async def mark_run_failed(self, run_id, error):
        self.runs[run_id] = "failed"
        self.last_error = error

    def active(self):
        return [r for r in self.rows if r.is_active]


def market(id_, platform, status=MarketStatus.OPEN):
    return Market(id=id_, platform=platform, platform_id=f"{platform.value}-{id_}", title=f"market {id_}", status=status)


def paired_store(**kw):
    poly_snap = normalize_snapshot(
        Platform.POLYMARKET,
        RawPriceRecord(market_id=POLY_ID, snapshot_at=NOW, yes_price=0.30, no_price=0.70, yes_ask_size=5000, no_ask_size=5000),
    ).model_copy(update={"id": 101})
    # kalshi delivers cents
    kalshi_snap = normalize_snapshot(
        Platform.KALSHI,
        RawPriceRecord(market_id=KALSHI_ID, snapshot_at=NOW, yes_price=65, no_price=35, yes_ask_size=5000, no_ask_size=5000),
    ).model_copy(update={"id": 102})
    markets = kw.pop("markets", [market(POLY_ID, Platform.POLYMARKET), market(KALSHI_ID, Platform.KALSHI)])
    return FakeStore(
        markets=markets,
        pairs=[MarketPair(id=PAIR_ID, poly_market_id=POLY_ID, kalshi_market_id=KALSHI_ID, status=PairStatus.CONFIRMED)],
        snapshots={POLY_ID: poly_snap, KALSHI_ID: kalshi_snap},
        **kw,
    )


def stored_cross(net=32.0, last_seen_at=NOW - timedelta(minutes=5), count=3):
    return ArbOpportunity(
        id=1,
        type=ArbType.CROSS_PLATFORM,
        quality=ArbQuality.EXECUTABLE,
        market_pair_id=PAIR_ID,
        gross_spread_pct=net + 3.0,
        total_fees_pct=3.0,
        net_spread_pct=net,
        max_deployable_usd=5000.0,
        capital_weighted_spread=net,
        detected_at=NOW - timedelta(hours=2),
        last_seen_at=last_seen_at,
        snapshot_count=count,
    )


@pytest.mark.asyncio
async def test_cross_platform_end_to_end_is_executable():
    store = paired_store()
    cycle = DetectionCycle(store, s=Settings())
    stats = await cycle.run(NOW)

    [opp] = store.active()
    assert opp.type is ArbType.CROSS_PLATFORM
    assert opp.market_pair_id == PAIR_ID
    assert opp.gross_spread_pct == pytest.approx(35.0)
    assert opp.total_fees_pct == pytest.approx(3.0)
    assert opp.net_spread_pct == pytest.approx(32.0)
    assert opp.quality is ArbQuality.EXECUTABLE
    assert opp.details["direction"] == "poly_yes_kalshi_no"
    assert (opp.snapshot_count, opp.duration_seconds) == (1, 0)

    assert stats.pairs_evaluated == 1
    assert stats.markets_evaluated == 2
    assert stats.arbs_detected == 1
    assert store.runs == {1: "completed"}
    assert store.last_stats == stats

    await cycle.run(NOW + timedelta(minutes=5))
    [opp] = store.active()
    assert opp.snapshot_count == 2
    assert opp.duration_seconds == 300
    assert opp.detected_at == NOW


@pytest.mark.asyncio
async def test_bogus_stored_spread_resolved_next_cycle():
    store = paired_store(opportunities=[stored_cross(net=150.0)])
    store.snapshots.clear()
    stats = await DetectionCycle(store, s=Settings()).run(NOW)

    assert store.active() == []
    [row] = store.rows
    assert row.resolution_reason is ResolutionReason.SANITY_CEILING
    assert row.resolved_at == NOW
    assert stats.arbs_resolved == 1


@pytest.mark.asyncio
async def test_spread_gone_resolves():
    store = paired_store(opportunities=[stored_cross()])
    store.snapshots[KALSHI_ID] = store.snapshots[KALSHI_ID].model_copy(update={"yes_price": 0.5, "no_price": 0.5})
    store.snapshots[POLY_ID] = store.snapshots[POLY_ID].model_copy(update={"yes_price": 0.5, "no_price": 0.5})
    await DetectionCycle(store, s=Settings()).run(NOW)

    [row] = store.rows
    assert row.resolution_reason is ResolutionReason.SPREAD_GONE


@pytest.mark.asyncio
async def test_timed_out_leg_neither_refreshes_nor_resolves():
    old = NOW - timedelta(hours=1)
    store = paired_store(opportunities=[stored_cross(last_seen_at=old)])
    store.delays[KALSHI_ID] = 1.0
    stats = await DetectionCycle(store, s=Settings(fetch_timeout_seconds=0.05)).run(NOW)

    [row] = store.rows
    assert row.is_active
    assert row.last_seen_at == old
    assert row.snapshot_count == 3
    assert stats.legs_skipped >= 1
    assert store.runs == {1: "completed"}


@pytest.mark.asyncio
async def test_closed_leg_resolves_pair():
    store = paired_store(
        markets=[market(POLY_ID, Platform.POLYMARKET), market(KALSHI_ID, Platform.KALSHI, status=MarketStatus.CLOSED)],
        opportunities=[stored_cross()],
    )
    await DetectionCycle(store, s=Settings()).run(NOW)

    [row] = store.rows
    assert row.resolution_reason is ResolutionReason.MARKET_CLOSED


@pytest.mark.asyncio
async def test_past_resolution_date_counts_as_closed():
    expired = market(KALSHI_ID, Platform.KALSHI).model_copy(update={"resolution_date": NOW - timedelta(minutes=1)})
    store = paired_store(markets=[market(POLY_ID, Platform.POLYMARKET), expired], opportunities=[stored_cross()])
    await DetectionCycle(store, s=Settings()).run(NOW)

    assert store.rows[0].resolution_reason is ResolutionReason.MARKET_CLOSED


@pytest.mark.asyncio
async def test_missing_fee_schedule_skips_platform():
    poly_only = FeeConfig.from_schedules([s for s in DEFAULT_FEE_SCHEDULES if s.platform is Platform.POLYMARKET])
    store = paired_store(fee_config=poly_only, opportunities=[stored_cross(last_seen_at=NOW - timedelta(hours=1))])
    stats = await DetectionCycle(store, s=Settings()).run(NOW)

    assert stats.errors == ["no fee schedule configured for platform 'kalshi'"]
    assert stats.pairs_evaluated == 0
    [row] = store.rows
    assert row.is_active  # skipped, so exempt from stale closing
    assert store.runs == {1: "completed"}


@pytest.mark.asyncio
async def test_unseen_record_goes_stale():
    store = paired_store(opportunities=[stored_cross(last_seen_at=NOW - timedelta(hours=1))])
    store.pairs.clear()
    await DetectionCycle(store, s=Settings(stale_after_minutes=10)).run(NOW)

    assert store.rows[0].resolution_reason is ResolutionReason.STALE


@pytest.mark.asyncio
async def test_underround_detected_on_single_market():
    snap = PriceSnapshot(
        id=5, market_id=7, snapshot_at=NOW, yes_price=0.5, no_price=0.5,
        yes_ask=0.40, no_ask=0.45, yes_ask_size=3000, no_ask_size=3000,
    )
    store = FakeStore(markets=[market(7, Platform.POLYMARKET)], snapshots={7: snap})
    await DetectionCycle(store, s=Settings()).run(NOW)

    [opp] = store.active()
    assert opp.type is ArbType.UNDERROUND
    assert opp.market_id == 7
    assert opp.gross_spread_pct == pytest.approx(15.0)
    assert opp.net_spread_pct == pytest.approx(11.0)  # two polymarket legs at 2%


@pytest.mark.asyncio
async def test_run_collision_raises_without_work():
    store = paired_store()
    store.runs[99] = "running"
    with pytest.raises(RunAlreadyActiveError):
        await DetectionCycle(store, s=Settings()).run(NOW)
    assert store.rows == []


@pytest.mark.asyncio
async def test_failure_marks_run_failed():
    class Broken(FakeStore):
        async def load_fee_config(self):
            raise RuntimeError("db down")

    store = Broken(markets=[])
    with pytest.raises(RuntimeError):
        await DetectionCycle(store, s=Settings()).run(NOW)
    assert store.runs == {1: "failed"}
    assert "db down" in store.last_error


@pytest.mark.asyncio
async def test_volume_spike_alerts_once_per_snapshot():
    snap = PriceSnapshot(id=77, market_id=7, snapshot_at=NOW, yes_price=0.5, no_price=0.5, volume_24h=9000.0)
    history = {7: [(NOW - timedelta(hours=h), 2000.0) for h in (1, 2, 3)]}
    store = FakeStore(markets=[market(7, Platform.KALSHI)], snapshots={7: snap}, history=history)
    cycle = DetectionCycle(store, s=Settings())

    stats = await cycle.run(NOW)
    assert stats.volume_alerts == 1
    [alert] = store.alerts
    assert alert.snapshot_id == 77
    assert alert.multiplier == pytest.approx(4.5)

    stats = await cycle.run(NOW + timedelta(minutes=5))
    assert stats.volume_alerts == 0
    assert len(store.alerts) == 1


@pytest.mark.asyncio
async def test_volume_history_error_skips_only_volume():
    class FlakyHistory(FakeStore):
        async def volume_history(self, market_id, since, until):
            if market_id == KALSHI_ID:
                raise RuntimeError("history query failed")
            return await super().volume_history(market_id, since, until)

    base = paired_store(opportunities=[stored_cross()])
    store = FlakyHistory(
        markets=list(base.markets.values()), pairs=base.pairs, snapshots=base.snapshots, opportunities=base.rows
    )
    stats = await DetectionCycle(store, s=Settings()).run(NOW)

    assert store.runs == {1: "completed"}
    [opp] = store.active()
    assert opp.snapshot_count == 4
    assert opp.last_seen_at == NOW
    assert stats.pairs_evaluated == 1
    assert store.alerts == []


@pytest.mark.asyncio
async def test_slow_run_start_is_not_cut_off_by_fetch_timeout():
    class SlowStart(FakeStore):
        async def mark_run_started(self, run_type):
            await asyncio.sleep(0.2)
            return await super().mark_run_started(run_type)

    base = paired_store()
    store = SlowStart(markets=list(base.markets.values()), pairs=base.pairs, snapshots=base.snapshots)
    await DetectionCycle(store, s=Settings(fetch_timeout_seconds=0.05)).run(NOW)

    assert store.runs == {1: "completed"}
    assert len(store.active()) == 1
