"""Snapshot ingestion boundary.

Prices are normalized exactly once, here, before they reach storage.
"""
from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pm_arb.normalization import RawPriceRecord, normalize_price, normalize_snapshot
from pm_arb.schemas import Platform, PriceSnapshot
from pm_arb.sql import execute, fetch_all, fetch_value

log = structlog.get_logger(__name__)

PRICE_COLUMNS = ("yes_price", "no_price", "yes_bid", "yes_ask", "no_bid", "no_ask")


async def insert_snapshot(session: AsyncSession, platform: Platform, raw: RawPriceRecord) -> PriceSnapshot:
    """Normalize a raw record and append it to price_snapshots (caller commits)."""
    snap = normalize_snapshot(platform, raw)
    snap_id = await fetch_value(
        session,
        """
        INSERT INTO price_snapshots(
          market_id, snapshot_at, yes_price, no_price,
          yes_bid, yes_ask, no_bid, no_ask,
          yes_bid_size, yes_ask_size, no_bid_size, no_ask_size,
          volume_24h, volume_all_time, is_backfill
        )
        VALUES (
          :market_id, :snapshot_at, :yes_price, :no_price,
          :yes_bid, :yes_ask, :no_bid, :no_ask,
          :yes_bid_size, :yes_ask_size, :no_bid_size, :no_ask_size,
          :volume_24h, :volume_all_time, :is_backfill
        )
        RETURNING id
        """,
        snap.model_dump(exclude={"id"}),
    )
    return snap.model_copy(update={"id": snap_id})


async def fetch_unnormalized_kalshi(session: AsyncSession, limit: int = 1000) -> list[dict[str, Any]]:
    """Kalshi rows where any price column still holds a cents value."""
    cond = " OR ".join(f"ps.{c} > 1" for c in PRICE_COLUMNS)
    return await fetch_all(
        session,
        f"""
        SELECT ps.id, {", ".join(f"ps.{c}" for c in PRICE_COLUMNS)}
        FROM price_snapshots ps
        JOIN markets m ON m.id = ps.market_id
        WHERE m.platform = 'kalshi' AND ({cond})
        ORDER BY ps.id
        LIMIT :limit
        """,
        {"limit": limit},
    )


def renormalized_prices(row: dict[str, Any]) -> dict[str, float | None]:
    out: dict[str, float | None] = {}
    for c in PRICE_COLUMNS:
        v = row.get(c)
        out[c] = None if v is None else normalize_price(Platform.KALSHI, float(v))
    return out


async def renormalize_kalshi_batch(session: AsyncSession, limit: int = 1000) -> int:
    """Rewrite one batch of cents-valued Kalshi rows in place; returns rows fixed (caller commits)."""
    rows = await fetch_unnormalized_kalshi(session, limit=limit)
    for row in rows:
        fixed = renormalized_prices(row)
        await execute(
            session,
            f"UPDATE price_snapshots SET {', '.join(f'{c} = :{c}' for c in PRICE_COLUMNS)} WHERE id = :id",
            {"id": row["id"], **fixed},
        )
    if rows:
        log.info("kalshi_snapshots_renormalized", n=len(rows))
    return len(rows)
