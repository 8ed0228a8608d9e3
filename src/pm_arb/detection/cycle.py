"""One detection run: evaluate every open market and confirmed pair, then persist.

Snapshot fetches fan out under a semaphore with a per-call timeout. A leg whose
data is missing or timed out is skipped for the run: its opportunity is neither
refreshed nor resolved, and it is exempt from stale closing.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, TypeVar

import structlog

from pm_arb import metrics
from pm_arb.arbitrage.detector import ArbitrageDetector
from pm_arb.arbitrage.lifecycle import Action, OpportunityIndex, Transition
from pm_arb.config import Settings, settings
from pm_arb.errors import FeeConfigUnavailableError, RunAlreadyActiveError
from pm_arb.fees import FeeConfig
from pm_arb.repo.base import DetectionStore
from pm_arb.schemas import ArbType, Market, MarketPair, OpportunityKey, Platform, PriceSnapshot, RunStats
from pm_arb.volume.anomaly import VolumeAnomalyDetector

log = structlog.get_logger(__name__)

RUN_TYPE = "arb_detection"

T = TypeVar("T")


@dataclass
class MarketData:
    market_id: int
    snapshot: PriceSnapshot | None = None
    skipped: str | None = None  # "timeout" | "error" | "missing"
    volume_ready: bool = False


class DetectionCycle:
    def __init__(
        self,
        store: DetectionStore,
        detector: ArbitrageDetector | None = None,
        volume: VolumeAnomalyDetector | None = None,
        s: Settings = settings,
    ):
        self.store = store
        self.detector = detector or ArbitrageDetector.from_settings(s)
        # kept across runs so a scheduled loop does not re-prime every market
        self.volume = volume or VolumeAnomalyDetector.from_settings(s)
        self.sanity_ceiling_pct = s.sanity_ceiling_pct
        self.stale_after = timedelta(minutes=s.stale_after_minutes)
        self.concurrency = s.detection_concurrency
        self.timeout = s.fetch_timeout_seconds

    async def _call(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, self.timeout)

    async def run(self, now: datetime | None = None) -> RunStats:
        """Execute one run under the run coordinator.

        Raises RunAlreadyActiveError without doing any work when another run is in flight.
        """
        # not under the fetch timeout: a cancelled insert can commit and orphan the running row
        try:
            run_id = await self.store.mark_run_started(RUN_TYPE)
        except RunAlreadyActiveError:
            metrics.RUN_COLLISIONS.inc()
            raise

        with structlog.contextvars.bound_contextvars(run_id=run_id, run_type=RUN_TYPE):
            started = time.perf_counter()
            log.info("detection_run_started")
            try:
                stats = await self._run(now or datetime.now(timezone.utc))
            except asyncio.CancelledError:
                await self.store.mark_run_failed(run_id, "cancelled")
                metrics.RUNS.labels("failed").inc()
                log.warning("detection_run_cancelled")
                raise
            except Exception as e:
                await self.store.mark_run_failed(run_id, f"{type(e).__name__}: {e}")
                metrics.RUNS.labels("failed").inc()
                log.exception("detection_run_failed")
                raise

            await self.store.mark_run_completed(run_id, stats)
            elapsed = time.perf_counter() - started
            metrics.CYCLE_SECONDS.observe(elapsed)
            metrics.RUNS.labels("completed").inc()
            log.info("detection_run_completed", seconds=round(elapsed, 3), **stats.model_dump(exclude={"errors"}))
            return stats

    async def _run(self, now: datetime) -> RunStats:
        stats = RunStats()
        fee_config = await self._call(self.store.load_fee_config())
        index = OpportunityIndex(await self._call(self.store.load_active_opportunities()), self.sanity_ceiling_pct)

        for t in index.resolve_insane(now):
            log.warning("arb_force_resolved", key=str(t.key), net_spread_pct=t.record.net_spread_pct if t.record else None)
            await self._persist(t, stats)

        markets = {m.id: m for m in await self._call(self.store.list_markets())}
        pairs = await self._call(self.store.confirmed_pairs())

        tradable = [m for m in markets.values() if m.is_tradable(now)]
        data = await self._fetch_all(tradable)

        skipped: set[OpportunityKey] = set()
        unavailable: set[Platform] = set()

        for market in markets.values():
            key = OpportunityKey(ArbType.UNDERROUND, market.id)
            if not market.is_tradable(now):
                await self._persist(index.observe(key, None, now, market_closed=True), stats)
                continue
            d = data[market.id]
            if d.snapshot is None:
                self._skip(key, d.skipped or "missing", stats, skipped)
                continue
            try:
                candidate = self.detector.evaluate_underround(market, d.snapshot, fee_config)
            except FeeConfigUnavailableError as e:
                self._fee_unavailable(e, key, stats, skipped, unavailable)
                continue
            stats.markets_evaluated += 1
            await self._persist(index.observe(key, candidate, now), stats)

        for pair in pairs:
            await self._evaluate_pair(pair, markets, data, fee_config, index, now, stats, skipped, unavailable)

        for t in index.resolve_stale(now, self.stale_after, exclude=skipped):
            await self._persist(t, stats)

        for d in data.values():
            if d.snapshot is not None and d.volume_ready:
                alert = self.volume.observe(d.snapshot)
                if alert is not None and await self._call(self.store.append_volume_alert(alert)):
                    stats.volume_alerts += 1
                    metrics.VOLUME_ALERTS.inc()

        return stats

    async def _evaluate_pair(
        self,
        pair: MarketPair,
        markets: dict[int, Market],
        data: dict[int, MarketData],
        fee_config: FeeConfig,
        index: OpportunityIndex,
        now: datetime,
        stats: RunStats,
        skipped: set[OpportunityKey],
        unavailable: set[Platform],
    ) -> None:
        key = OpportunityKey(ArbType.CROSS_PLATFORM, pair.id)
        poly = markets.get(pair.poly_market_id)
        kalshi = markets.get(pair.kalshi_market_id)
        if poly is None or kalshi is None:
            self._skip(key, "missing", stats, skipped)
            return
        if poly.platform is not Platform.POLYMARKET or kalshi.platform is not Platform.KALSHI:
            log.warning("pair_platform_mismatch", pair_id=pair.id, poly=poly.platform.value, kalshi=kalshi.platform.value)
            self._skip(key, "missing", stats, skipped)
            return
        if not (poly.is_tradable(now) and kalshi.is_tradable(now)):
            await self._persist(index.observe(key, None, now, market_closed=True), stats)
            return

        legs = (data[poly.id], data[kalshi.id])
        for d in legs:
            if d.snapshot is None:
                self._skip(key, d.skipped or "missing", stats, skipped)
                return
        try:
            candidate = self.detector.evaluate_cross_platform(
                pair, poly, legs[0].snapshot, kalshi, legs[1].snapshot, fee_config  # type: ignore[arg-type]
            )
        except FeeConfigUnavailableError as e:
            self._fee_unavailable(e, key, stats, skipped, unavailable)
            return
        stats.pairs_evaluated += 1
        await self._persist(index.observe(key, candidate, now), stats)

    async def _fetch_all(self, markets: list[Market]) -> dict[int, MarketData]:
        sem = asyncio.Semaphore(self.concurrency)

        async def one(market: Market) -> MarketData:
            async with sem:
                return await self._fetch_market(market)

        results = await asyncio.gather(*(one(m) for m in markets))
        return {d.market_id: d for d in results}

    async def _fetch_market(self, market: Market) -> MarketData:
        try:
            snap = await self._call(self.store.latest_snapshot(market.id))
        except asyncio.TimeoutError:
            log.warning("snapshot_fetch_timeout", market_id=market.id, timeout=self.timeout)
            return MarketData(market.id, skipped="timeout")
        except Exception as e:
            log.warning("snapshot_fetch_failed", market_id=market.id, error=str(e))
            return MarketData(market.id, skipped="error")
        if snap is None:
            return MarketData(market.id, skipped="missing")

        if self.volume.has_history(market.id):
            return MarketData(market.id, snapshot=snap, volume_ready=True)
        try:
            history = await self._call(
                self.store.volume_history(market.id, snap.snapshot_at - self.volume.window, snap.snapshot_at)
            )
        except asyncio.TimeoutError:
            log.warning("volume_history_timeout", market_id=market.id, timeout=self.timeout)
            return MarketData(market.id, snapshot=snap)
        except Exception as e:
            log.warning("volume_history_failed", market_id=market.id, error=str(e))
            return MarketData(market.id, snapshot=snap)
        self.volume.prime(market.id, history)
        return MarketData(market.id, snapshot=snap, volume_ready=True)

    def _skip(self, key: OpportunityKey, cause: str, stats: RunStats, skipped: set[OpportunityKey]) -> None:
        skipped.add(key)
        stats.legs_skipped += 1
        metrics.LEGS_SKIPPED.labels(cause).inc()
        log.debug("evaluation_skipped", key=str(key), cause=cause)

    def _fee_unavailable(
        self,
        e: FeeConfigUnavailableError,
        key: OpportunityKey,
        stats: RunStats,
        skipped: set[OpportunityKey],
        unavailable: set[Platform],
    ) -> None:
        platform = Platform(e.platform)
        if platform not in unavailable:
            unavailable.add(platform)
            stats.errors.append(str(e))
            log.error("fee_config_unavailable", platform=e.platform)
        self._skip(key, "fee_config", stats, skipped)

    async def _persist(self, t: Transition, stats: RunStats) -> None:
        if t.action is Action.NOOP or t.record is None:
            return
        metrics.ARB_TRANSITIONS.labels(t.key.type.value, t.action.value).inc()
        if t.action is Action.RESOLVE:
            await self._call(self.store.resolve_opportunity(t.record))
            stats.arbs_resolved += 1
            reason = t.reason.value if t.reason else "unknown"
            metrics.ARB_RESOLVED.labels(t.key.type.value, reason).inc()
            log.info("arb_resolved", key=str(t.key), reason=reason, duration_seconds=t.record.duration_seconds)
            return

        await self._call(self.store.upsert_opportunity(t.record))
        stats.arbs_detected += 1
        if t.action is Action.ACTIVATE:
            log.info(
                "arb_activated",
                key=str(t.key),
                quality=t.record.quality.value,
                net_spread_pct=round(t.record.net_spread_pct, 4),
                max_deployable_usd=t.record.max_deployable_usd,
            )


async def run_detection(store: DetectionStore | None = None, now: datetime | None = None) -> RunStats:
    if store is None:
        from pm_arb.repo.postgres import PostgresStore

        store = PostgresStore()
    return await DetectionCycle(store).run(now)
