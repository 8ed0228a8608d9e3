from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from pm_arb.schemas import Platform, PriceSnapshot

CENTS_THRESHOLD = 1.0


@dataclass(frozen=True)
class RawPriceRecord:
    """A per-market price/volume record as delivered by the ingestion transport, venue-native units."""

    market_id: int
    snapshot_at: datetime
    yes_price: float | None
    no_price: float | None = None
    yes_bid: float | None = None
    yes_ask: float | None = None
    no_bid: float | None = None
    no_ask: float | None = None
    yes_bid_size: float | None = None
    yes_ask_size: float | None = None
    no_bid_size: float | None = None
    no_ask_size: float | None = None
    volume_24h: float | None = None
    volume_all_time: float | None = None
    is_backfill: bool = False


def clamp_prob(p: float | None) -> float:
    if p is None or not math.isfinite(p) or p < 0:
        return 0.0
    return min(1.0, p)


def normalize_price(platform: Platform, raw: float | None) -> float:
    """Convert a venue-native price into a probability in [0, 1].

    Kalshi quotes in cents but has at times delivered already-normalized values,
    so anything above 1 is treated as cents. Re-applying to a normalized value
    is a no-op.
    """
    if raw is None:
        return 0.0
    if platform is Platform.KALSHI and math.isfinite(raw) and raw > CENTS_THRESHOLD:
        raw = raw / 100.0
    return clamp_prob(raw)


def _optional(platform: Platform, raw: float | None) -> float | None:
    return None if raw is None else normalize_price(platform, raw)


def _size(v: float | None) -> float | None:
    if v is None or not math.isfinite(v):
        return None
    return max(0.0, v)


def normalize_snapshot(platform: Platform, rec: RawPriceRecord) -> PriceSnapshot:
    """Normalize every price field of a raw record independently."""
    yes = normalize_price(platform, rec.yes_price)
    no = normalize_price(platform, rec.no_price) if rec.no_price is not None else 1.0 - yes
    return PriceSnapshot(
        market_id=rec.market_id,
        snapshot_at=rec.snapshot_at,
        yes_price=yes,
        no_price=no,
        yes_bid=_optional(platform, rec.yes_bid),
        yes_ask=_optional(platform, rec.yes_ask),
        no_bid=_optional(platform, rec.no_bid),
        no_ask=_optional(platform, rec.no_ask),
        yes_bid_size=_size(rec.yes_bid_size),
        yes_ask_size=_size(rec.yes_ask_size),
        no_bid_size=_size(rec.no_bid_size),
        no_ask_size=_size(rec.no_ask_size),
        volume_24h=_size(rec.volume_24h) or 0.0,
        volume_all_time=_size(rec.volume_all_time) or 0.0,
        is_backfill=rec.is_backfill,
    )


def is_usable_price(p: float | None) -> bool:
    """A price can back a leg only strictly inside (0, 1)."""
    return p is not None and math.isfinite(p) and 0.0 < p < 1.0
