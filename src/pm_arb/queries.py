"""Read path over stored detection results.

Failures never raise to the caller: they come back as a :class:`ReadPathError`
on an empty result so a display layer can show an indicator.
"""
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pm_arb.db import get_session
from pm_arb.errors import ReadPathError
from pm_arb.repo.postgres import opportunity_from_row
from pm_arb.schemas import ArbOpportunity, ArbQuality, ArbType, VolumeAlert
from pm_arb.sql import fetch_all, fetch_one

log = structlog.get_logger(__name__)

T = TypeVar("T")
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class ReadResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    error: ReadPathError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ArbStats:
    active_count: int = 0
    executable_count: int = 0
    thin_count: int = 0
    theoretical_count: int = 0
    underround_count: int = 0
    cross_platform_count: int = 0
    avg_net_spread_pct: float = 0.0
    max_net_spread_pct: float = 0.0
    resolved_24h: int = 0


def _failed(query: str, e: Exception) -> ReadPathError:
    log.error("read_path_failed", query=query, error=str(e))
    return ReadPathError(query, str(e))


async def get_active_arbs(
    *,
    arb_type: ArbType | None = None,
    quality: ArbQuality | None = None,
    min_net_spread_pct: float | None = None,
    limit: int = 100,
    session_factory: SessionFactory = get_session,
) -> ReadResult[ArbOpportunity]:
    """Active opportunities, best net spread first.

    Cross-platform opportunities whose legs have passed their resolution date
    are left out even if the next run has not resolved them yet.
    """
    where = ["a.resolved_at IS NULL"]
    params: dict[str, Any] = {"limit": limit}
    if arb_type is not None:
        where.append("a.type = :type")
        params["type"] = arb_type.value
    if quality is not None:
        where.append("a.quality = :quality")
        params["quality"] = quality.value
    if min_net_spread_pct is not None:
        where.append("a.net_spread_pct >= :min_net")
        params["min_net"] = min_net_spread_pct

    sql = f"""
        SELECT a.*
        FROM arb_opportunities a
        LEFT JOIN market_pairs mp ON mp.id = a.market_pair_id
        LEFT JOIN markets pm ON pm.id = mp.poly_market_id
        LEFT JOIN markets km ON km.id = mp.kalshi_market_id
        WHERE {" AND ".join(where)}
          AND (
            a.type <> 'cross_platform'
            OR (
              (pm.resolution_date IS NULL OR pm.resolution_date > NOW())
              AND (km.resolution_date IS NULL OR km.resolution_date > NOW())
            )
          )
        ORDER BY a.net_spread_pct DESC
        LIMIT :limit
    """
    try:
        async with session_factory() as session:
            rows = await fetch_all(session, sql, params)
    except (SQLAlchemyError, OSError) as e:
        return ReadResult(error=_failed("get_active_arbs", e))
    return ReadResult(items=[opportunity_from_row(r) for r in rows])


async def get_arb_stats(*, session_factory: SessionFactory = get_session) -> ReadResult[ArbStats]:
    try:
        async with session_factory() as session:
            row = await fetch_one(
                session,
                """
                SELECT
                  COUNT(*) FILTER (WHERE resolved_at IS NULL) AS active_count,
                  COUNT(*) FILTER (WHERE resolved_at IS NULL AND quality = 'executable') AS executable_count,
                  COUNT(*) FILTER (WHERE resolved_at IS NULL AND quality = 'thin') AS thin_count,
                  COUNT(*) FILTER (WHERE resolved_at IS NULL AND quality = 'theoretical') AS theoretical_count,
                  COUNT(*) FILTER (WHERE resolved_at IS NULL AND type = 'underround') AS underround_count,
                  COUNT(*) FILTER (WHERE resolved_at IS NULL AND type = 'cross_platform') AS cross_platform_count,
                  COALESCE(AVG(net_spread_pct) FILTER (WHERE resolved_at IS NULL), 0) AS avg_net_spread_pct,
                  COALESCE(MAX(net_spread_pct) FILTER (WHERE resolved_at IS NULL), 0) AS max_net_spread_pct,
                  COUNT(*) FILTER (WHERE resolved_at >= NOW() - INTERVAL '24 hours') AS resolved_24h
                FROM arb_opportunities
                """,
            )
    except (SQLAlchemyError, OSError) as e:
        return ReadResult(error=_failed("get_arb_stats", e))
    if not row:
        return ReadResult(items=[ArbStats()])
    return ReadResult(
        items=[
            ArbStats(
                active_count=int(row["active_count"] or 0),
                executable_count=int(row["executable_count"] or 0),
                thin_count=int(row["thin_count"] or 0),
                theoretical_count=int(row["theoretical_count"] or 0),
                underround_count=int(row["underround_count"] or 0),
                cross_platform_count=int(row["cross_platform_count"] or 0),
                avg_net_spread_pct=float(row["avg_net_spread_pct"] or 0),
                max_net_spread_pct=float(row["max_net_spread_pct"] or 0),
                resolved_24h=int(row["resolved_24h"] or 0),
            )
        ]
    )


async def get_recent_volume_alerts(
    *, hours: int = 24, limit: int = 50, session_factory: SessionFactory = get_session
) -> ReadResult[VolumeAlert]:
    try:
        async with session_factory() as session:
            rows = await fetch_all(
                session,
                """
                SELECT market_id, snapshot_id, volume_usd, rolling_avg_7d, rolling_stddev_7d,
                       multiplier, z_score, alert_at
                FROM volume_alerts
                WHERE alert_at >= NOW() - make_interval(hours => :hours)
                ORDER BY alert_at DESC
                LIMIT :limit
                """,
                {"hours": hours, "limit": limit},
            )
    except (SQLAlchemyError, OSError) as e:
        return ReadResult(error=_failed("get_recent_volume_alerts", e))
    return ReadResult(
        items=[
            VolumeAlert(
                market_id=r["market_id"],
                snapshot_id=r.get("snapshot_id"),
                volume_usd=float(r["volume_usd"]),
                rolling_avg_7d=float(r["rolling_avg_7d"]),
                rolling_stddev_7d=float(r["rolling_stddev_7d"]),
                multiplier=float(r["multiplier"]),
                z_score=float(r["z_score"]),
                alert_at=r["alert_at"],
            )
            for r in rows
        ]
    )
