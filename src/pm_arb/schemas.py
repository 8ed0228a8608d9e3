from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Platform(str, Enum):
    POLYMARKET = "polymarket"  # probability-native
    KALSHI = "kalshi"  # cents-native


class MarketStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"


class PairStatus(str, Enum):
    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ArbType(str, Enum):
    UNDERROUND = "underround"
    CROSS_PLATFORM = "cross_platform"


class ArbQuality(str, Enum):
    EXECUTABLE = "executable"
    THIN = "thin"
    THEORETICAL = "theoretical"


class ResolutionReason(str, Enum):
    SPREAD_GONE = "spread_gone"
    MARKET_CLOSED = "market_closed"
    SANITY_CEILING = "sanity_ceiling"
    STALE = "stale"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Market(BaseModel):
    id: int
    platform: Platform
    platform_id: str
    title: str
    status: MarketStatus
    resolution_date: datetime | None = None
    event_id: str | None = None

    def is_tradable(self, now: datetime) -> bool:
        if self.status is not MarketStatus.OPEN:
            return False
        return self.resolution_date is None or self.resolution_date > now


class PriceSnapshot(BaseModel):
    id: int | None = None
    market_id: int
    snapshot_at: datetime

    yes_price: float = Field(..., ge=0.0, le=1.0)
    no_price: float = Field(..., ge=0.0, le=1.0)

    yes_bid: float | None = Field(default=None, ge=0.0, le=1.0)
    yes_ask: float | None = Field(default=None, ge=0.0, le=1.0)
    no_bid: float | None = Field(default=None, ge=0.0, le=1.0)
    no_ask: float | None = Field(default=None, ge=0.0, le=1.0)

    yes_bid_size: float | None = Field(default=None, ge=0.0)
    yes_ask_size: float | None = Field(default=None, ge=0.0)
    no_bid_size: float | None = Field(default=None, ge=0.0)
    no_ask_size: float | None = Field(default=None, ge=0.0)

    volume_24h: float = Field(default=0.0, ge=0.0)
    volume_all_time: float = Field(default=0.0, ge=0.0)
    is_backfill: bool = False

    def best_yes_ask(self) -> float:
        return self.yes_ask if self.yes_ask is not None else self.yes_price

    def best_no_ask(self) -> float:
        return self.no_ask if self.no_ask is not None else self.no_price


class MarketPair(BaseModel):
    id: int
    poly_market_id: int
    kalshi_market_id: int
    match_score: float | None = None
    status: PairStatus = PairStatus.SUGGESTED


class FeeSchedule(BaseModel):
    """Per-platform fee schedule; fee fields are fractions (0.02 = 2%)."""

    platform: Platform
    taker_fee_pct: float = Field(..., ge=0.0)
    maker_fee_pct: float = Field(default=0.0, ge=0.0)
    settlement_fee_pct: float = Field(default=0.0, ge=0.0)
    withdrawal_fee_flat: float = Field(default=0.0, ge=0.0)
    fee_notes: str | None = None
    last_verified_at: datetime | None = None


@dataclass(frozen=True)
class OpportunityKey:
    type: ArbType
    subject_id: int  # market id for underround, pair id for cross_platform

    def __str__(self) -> str:
        return f"{self.type.value}:{self.subject_id}"


class ArbOpportunity(BaseModel):
    id: int | None = None
    type: ArbType
    quality: ArbQuality
    market_id: int | None = None
    market_pair_id: int | None = None

    gross_spread_pct: float
    total_fees_pct: float
    net_spread_pct: float
    max_deployable_usd: float
    capital_weighted_spread: float

    detected_at: datetime
    last_seen_at: datetime
    snapshot_count: int = 1
    duration_seconds: int = 0
    resolved_at: datetime | None = None
    resolution_reason: ResolutionReason | None = None

    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> OpportunityKey:
        subject = self.market_id if self.type is ArbType.UNDERROUND else self.market_pair_id
        if subject is None:
            raise ValueError(f"{self.type.value} opportunity has no subject id")
        return OpportunityKey(self.type, subject)

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None


class VolumeAlert(BaseModel):
    market_id: int
    snapshot_id: int | None = None
    volume_usd: float
    rolling_avg_7d: float
    rolling_stddev_7d: float
    multiplier: float
    z_score: float
    alert_at: datetime


class RunStats(BaseModel):
    markets_evaluated: int = 0
    pairs_evaluated: int = 0
    arbs_detected: int = 0
    arbs_resolved: int = 0
    volume_alerts: int = 0
    legs_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
