"""Postgres implementation of the detection collaborators.

Every write runs in its own session and commits as one statement, so a
cancelled run never leaves an opportunity half-updated.
"""
from __future__ import annotations

import json
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pm_arb.config import settings
from pm_arb.db import get_session
from pm_arb.errors import RunAlreadyActiveError
from pm_arb.fees import FeeConfig
from pm_arb.repo.base import DetectionStore
from pm_arb.schemas import (
    ArbOpportunity,
    FeeSchedule,
    Market,
    MarketPair,
    Platform,
    PriceSnapshot,
    RunStats,
    VolumeAlert,
)
from pm_arb.sql import execute, fetch_all, fetch_one, fetch_value

log = structlog.get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _f(v: Any) -> float | None:
    return None if v is None else float(v)


def market_from_row(r: dict[str, Any]) -> Market:
    return Market(
        id=r["id"],
        platform=r["platform"],
        platform_id=r["platform_id"],
        title=r["title"],
        status=r["status"],
        resolution_date=r.get("resolution_date"),
        event_id=r.get("event_id"),
    )


def snapshot_from_row(r: dict[str, Any]) -> PriceSnapshot:
    return PriceSnapshot(
        id=r["id"],
        market_id=r["market_id"],
        snapshot_at=r["snapshot_at"],
        yes_price=float(r["yes_price"]),
        no_price=float(r["no_price"]),
        yes_bid=_f(r.get("yes_bid")),
        yes_ask=_f(r.get("yes_ask")),
        no_bid=_f(r.get("no_bid")),
        no_ask=_f(r.get("no_ask")),
        yes_bid_size=_f(r.get("yes_bid_size")),
        yes_ask_size=_f(r.get("yes_ask_size")),
        no_bid_size=_f(r.get("no_bid_size")),
        no_ask_size=_f(r.get("no_ask_size")),
        volume_24h=_f(r.get("volume_24h")) or 0.0,
        volume_all_time=_f(r.get("volume_all_time")) or 0.0,
        is_backfill=bool(r.get("is_backfill")),
    )


def opportunity_from_row(r: dict[str, Any]) -> ArbOpportunity:
    details = r.get("details") or {}
    if isinstance(details, str):
        details = json.loads(details)
    return ArbOpportunity(
        id=r["id"],
        type=r["type"],
        quality=r["quality"],
        market_id=r.get("market_id"),
        market_pair_id=r.get("market_pair_id"),
        gross_spread_pct=float(r["gross_spread_pct"]),
        total_fees_pct=float(r["total_fees_pct"]),
        net_spread_pct=float(r["net_spread_pct"]),
        max_deployable_usd=float(r["max_deployable_usd"]),
        capital_weighted_spread=float(r["capital_weighted_spread"]),
        detected_at=r["detected_at"],
        last_seen_at=r["last_seen_at"],
        snapshot_count=r["snapshot_count"],
        duration_seconds=r["duration_seconds"],
        resolved_at=r.get("resolved_at"),
        resolution_reason=r.get("resolution_reason"),
        details=details,
    )


class PostgresStore(DetectionStore):
    def __init__(self, session_factory: SessionFactory = get_session, run_stale_after_seconds: int | None = None):
        self._session = session_factory
        self.run_stale_after_seconds = (
            run_stale_after_seconds if run_stale_after_seconds is not None else settings.run_stale_after_seconds
        )

    # -- market catalog / snapshots / pairs -------------------------------

    async def list_markets(self) -> list[Market]:
        async with self._session() as session:
            rows = await fetch_all(
                session,
                """
                SELECT m.id, m.platform, m.platform_id, m.title, m.status, m.resolution_date, m.event_id
                FROM markets m
                WHERE m.status = 'open'
                   OR m.id IN (
                     SELECT market_id FROM arb_opportunities
                     WHERE resolved_at IS NULL AND market_id IS NOT NULL
                   )
                   OR m.id IN (SELECT poly_market_id FROM market_pairs WHERE status = 'confirmed')
                   OR m.id IN (SELECT kalshi_market_id FROM market_pairs WHERE status = 'confirmed')
                """,
            )
        markets: list[Market] = []
        for r in rows:
            try:
                markets.append(market_from_row(r))
            except ValueError as e:
                log.warning("market_row_invalid", market_id=r.get("id"), error=str(e))
        return markets

    async def latest_snapshot(self, market_id: int) -> PriceSnapshot | None:
        async with self._session() as session:
            row = await fetch_one(
                session,
                """
                SELECT id, market_id, snapshot_at, yes_price, no_price,
                       yes_bid, yes_ask, no_bid, no_ask,
                       yes_bid_size, yes_ask_size, no_bid_size, no_ask_size,
                       volume_24h, volume_all_time, is_backfill
                FROM price_snapshots
                WHERE market_id = :market_id
                ORDER BY snapshot_at DESC
                LIMIT 1
                """,
                {"market_id": market_id},
            )
        return snapshot_from_row(row) if row else None

    async def volume_history(self, market_id: int, since: datetime, until: datetime) -> list[tuple[datetime, float]]:
        async with self._session() as session:
            rows = await fetch_all(
                session,
                """
                SELECT snapshot_at, volume_24h
                FROM price_snapshots
                WHERE market_id = :market_id
                  AND snapshot_at >= :since
                  AND snapshot_at < :until
                  AND volume_24h IS NOT NULL
                ORDER BY snapshot_at
                """,
                {"market_id": market_id, "since": since, "until": until},
            )
        return [(r["snapshot_at"], float(r["volume_24h"])) for r in rows]

    async def confirmed_pairs(self) -> list[MarketPair]:
        async with self._session() as session:
            rows = await fetch_all(
                session,
                """
                SELECT id, poly_market_id, kalshi_market_id, match_score, status
                FROM market_pairs
                WHERE status = 'confirmed'
                """,
            )
        return [
            MarketPair(
                id=r["id"],
                poly_market_id=r["poly_market_id"],
                kalshi_market_id=r["kalshi_market_id"],
                match_score=_f(r.get("match_score")),
                status=r["status"],
            )
            for r in rows
        ]

    async def load_fee_config(self) -> FeeConfig:
        async with self._session() as session:
            rows = await fetch_all(
                session,
                """
                SELECT platform, taker_fee_pct, maker_fee_pct, settlement_fee_pct,
                       withdrawal_fee_flat, fee_notes, last_verified_at
                FROM platform_config
                """,
            )
        known = {p.value for p in Platform}
        schedules = []
        for r in rows:
            if r["platform"] not in known:
                log.warning("fee_config_unknown_platform", platform=r["platform"])
                continue
            schedules.append(
                FeeSchedule(
                    platform=r["platform"],
                    taker_fee_pct=float(r["taker_fee_pct"]),
                    maker_fee_pct=float(r["maker_fee_pct"]),
                    settlement_fee_pct=float(r["settlement_fee_pct"]),
                    withdrawal_fee_flat=float(r["withdrawal_fee_flat"]),
                    fee_notes=r.get("fee_notes"),
                    last_verified_at=r.get("last_verified_at"),
                )
            )
        config = FeeConfig.from_schedules(schedules, loaded_at=datetime.now(timezone.utc))
        log.info("fee_config_loaded", platforms=sorted(p.value for p in config.schedules))
        return config

    # -- opportunities / alerts -------------------------------------------

    async def load_active_opportunities(self) -> list[ArbOpportunity]:
        async with self._session() as session:
            rows = await fetch_all(session, "SELECT * FROM arb_opportunities WHERE resolved_at IS NULL")
        return [opportunity_from_row(r) for r in rows]

    async def upsert_opportunity(self, record: ArbOpportunity) -> int:
        key = record.key
        async with self._session() as session:
            row = await fetch_one(
                session,
                """
                INSERT INTO arb_opportunities(
                  type, subject_id, quality, market_id, market_pair_id,
                  gross_spread_pct, total_fees_pct, net_spread_pct,
                  max_deployable_usd, capital_weighted_spread,
                  detected_at, last_seen_at, snapshot_count, duration_seconds, details
                )
                VALUES (
                  :type, :subject_id, :quality, :market_id, :market_pair_id,
                  :gross_spread_pct, :total_fees_pct, :net_spread_pct,
                  :max_deployable_usd, :capital_weighted_spread,
                  :detected_at, :last_seen_at, 1, 0, CAST(:details AS jsonb)
                )
                ON CONFLICT (type, subject_id) WHERE resolved_at IS NULL DO UPDATE SET
                  quality=EXCLUDED.quality,
                  gross_spread_pct=EXCLUDED.gross_spread_pct,
                  total_fees_pct=EXCLUDED.total_fees_pct,
                  net_spread_pct=EXCLUDED.net_spread_pct,
                  max_deployable_usd=EXCLUDED.max_deployable_usd,
                  capital_weighted_spread=EXCLUDED.capital_weighted_spread,
                  last_seen_at=EXCLUDED.last_seen_at,
                  snapshot_count=arb_opportunities.snapshot_count + 1,
                  duration_seconds=EXTRACT(EPOCH FROM (EXCLUDED.last_seen_at - arb_opportunities.detected_at))::INTEGER,
                  details=EXCLUDED.details
                RETURNING id
                """,
                {
                    "type": key.type.value,
                    "subject_id": key.subject_id,
                    "quality": record.quality.value,
                    "market_id": record.market_id,
                    "market_pair_id": record.market_pair_id,
                    "gross_spread_pct": record.gross_spread_pct,
                    "total_fees_pct": record.total_fees_pct,
                    "net_spread_pct": record.net_spread_pct,
                    "max_deployable_usd": record.max_deployable_usd,
                    "capital_weighted_spread": record.capital_weighted_spread,
                    "detected_at": record.detected_at,
                    "last_seen_at": record.last_seen_at,
                    "details": json.dumps(record.details),
                },
            )
            await session.commit()
        assert row is not None
        return int(row["id"])

    async def resolve_opportunity(self, record: ArbOpportunity) -> None:
        key = record.key
        async with self._session() as session:
            await execute(
                session,
                """
                UPDATE arb_opportunities
                SET resolved_at = :resolved_at,
                    resolution_reason = :reason
                WHERE type = :type AND subject_id = :subject_id AND resolved_at IS NULL
                """,
                {
                    "resolved_at": record.resolved_at or datetime.now(timezone.utc),
                    "reason": record.resolution_reason.value if record.resolution_reason else None,
                    "type": key.type.value,
                    "subject_id": key.subject_id,
                },
            )
            await session.commit()

    async def append_volume_alert(self, alert: VolumeAlert) -> bool:
        async with self._session() as session:
            row = await fetch_one(
                session,
                """
                INSERT INTO volume_alerts(
                  market_id, snapshot_id, volume_usd, rolling_avg_7d, rolling_stddev_7d,
                  z_score, multiplier, alert_at
                )
                VALUES (
                  :market_id, :snapshot_id, :volume_usd, :rolling_avg_7d, :rolling_stddev_7d,
                  :z_score, :multiplier, :alert_at
                )
                ON CONFLICT (market_id, snapshot_id) DO NOTHING
                RETURNING id
                """,
                alert.model_dump(),
            )
            await session.commit()
        return row is not None

    # -- run coordination -------------------------------------------------

    async def is_run_active(self, run_type: str) -> bool:
        async with self._session() as session:
            active = await fetch_value(
                session,
                "SELECT id FROM sync_status WHERE sync_type = :t AND status = 'running' LIMIT 1",
                {"t": run_type},
            )
        return active is not None

    async def mark_run_started(self, run_type: str) -> int:
        async with self._session() as session:
            expired = await execute(
                session,
                """
                UPDATE sync_status
                SET status = 'failed', completed_at = NOW(), error_message = 'expired: run exceeded stale window'
                WHERE sync_type = :t AND status = 'running'
                  AND started_at < NOW() - make_interval(secs => :stale)
                """,
                {"t": run_type, "stale": self.run_stale_after_seconds},
            )
            if expired > 0:
                log.warning("run_stale_expired", run_type=run_type, n=expired)
            run_id = await fetch_value(
                session,
                """
                INSERT INTO sync_status(sync_type, status)
                VALUES (:t, 'running')
                ON CONFLICT (sync_type) WHERE status = 'running' DO NOTHING
                RETURNING id
                """,
                {"t": run_type},
            )
            if run_id is None:
                active_id = await fetch_value(
                    session,
                    "SELECT id FROM sync_status WHERE sync_type = :t AND status = 'running' LIMIT 1",
                    {"t": run_type},
                )
                await session.commit()
                raise RunAlreadyActiveError(run_type, active_id)
            await session.commit()
        return int(run_id)

    async def mark_run_completed(self, run_id: int, stats: RunStats) -> None:
        async with self._session() as session:
            await execute(
                session,
                """
                UPDATE sync_status SET
                  completed_at = NOW(),
                  status = 'completed',
                  markets_synced = :markets,
                  arbs_detected = :arbs,
                  stats = CAST(:stats AS jsonb)
                WHERE id = :id
                """,
                {
                    "id": run_id,
                    "markets": stats.markets_evaluated,
                    "arbs": stats.arbs_detected,
                    "stats": stats.model_dump_json(),
                },
            )
            await session.commit()

    async def mark_run_failed(self, run_id: int, error: str) -> None:
        async with self._session() as session:
            await execute(
                session,
                """
                UPDATE sync_status SET completed_at = NOW(), status = 'failed', error_message = :error
                WHERE id = :id
                """,
                {"id": run_id, "error": error[:2000]},
            )
            await session.commit()
