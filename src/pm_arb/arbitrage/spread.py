"""Gross spread computation for underround and cross-platform opportunities."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pm_arb.config import Settings
from pm_arb.normalization import is_usable_price
from pm_arb.schemas import ArbType, Market, Platform, PriceSnapshot

Side = Literal["yes", "no"]


@dataclass(frozen=True)
class CapitalLimits:
    max_position_usd: float = 10_000.0
    liquidity_cap_usd: float = 50_000.0
    reference_capital_usd: float = 1_000.0
    volume_liquidity_fraction: float = 0.01

    @classmethod
    def from_settings(cls, s: Settings) -> "CapitalLimits":
        return cls(
            max_position_usd=s.max_position_usd,
            liquidity_cap_usd=s.liquidity_cap_usd,
            reference_capital_usd=s.reference_capital_usd,
            volume_liquidity_fraction=s.volume_liquidity_fraction,
        )


@dataclass(frozen=True)
class Leg:
    market_id: int
    platform: Platform
    side: Side
    price: float
    liquidity_usd: float

    def as_dict(self) -> dict:
        return {
            "market_id": self.market_id,
            "platform": self.platform.value,
            "side": self.side,
            "price": self.price,
            "liquidity_usd": self.liquidity_usd,
        }


@dataclass(frozen=True)
class SpreadResult:
    type: ArbType
    gross_spread: float  # fraction of the $1 payout
    legs: tuple[Leg, ...]
    max_deployable_usd: float
    direction: str | None = None

    @property
    def gross_spread_pct(self) -> float:
        return self.gross_spread * 100

    def strategy(self) -> str:
        parts = [f"Buy {leg.side.upper()} @ {leg.price:.2f} on {leg.platform.value}" for leg in self.legs]
        return ", ".join(parts)


def leg_liquidity(snapshot: PriceSnapshot, side: Side, limits: CapitalLimits) -> float:
    """Liquidity proxy for buying one side: size at the ask, else a fraction of 24h volume."""
    size = snapshot.yes_ask_size if side == "yes" else snapshot.no_ask_size
    if size is None:
        size = snapshot.volume_24h * limits.volume_liquidity_fraction
    return max(0.0, min(size, limits.liquidity_cap_usd))


def max_deployable(legs: tuple[Leg, ...], limits: CapitalLimits) -> float:
    if not legs:
        return 0.0
    return min(min(leg.liquidity_usd for leg in legs), limits.max_position_usd)


def capital_weighted_spread(net_spread_pct: float, max_deployable_usd: float, reference_capital_usd: float) -> float:
    """Scale net spread by how much of the reference capital the opportunity can absorb."""
    if reference_capital_usd <= 0:
        return 0.0
    return net_spread_pct * min(max_deployable_usd, reference_capital_usd) / reference_capital_usd


def _leg(market: Market, snapshot: PriceSnapshot, side: Side, limits: CapitalLimits) -> Leg | None:
    price = snapshot.best_yes_ask() if side == "yes" else snapshot.best_no_ask()
    if not is_usable_price(price):
        return None
    return Leg(
        market_id=market.id,
        platform=market.platform,
        side=side,
        price=price,
        liquidity_usd=leg_liquidity(snapshot, side, limits),
    )


def underround_spread(market: Market, snapshot: PriceSnapshot, limits: CapitalLimits) -> SpreadResult | None:
    """Buying YES and NO on one binary market for less than the $1 payout.

    Returns None when either ask is unusable or the spread is not positive.
    """
    yes = _leg(market, snapshot, "yes", limits)
    no = _leg(market, snapshot, "no", limits)
    if yes is None or no is None:
        return None
    gross = 1 - (yes.price + no.price)
    if gross <= 0:
        return None
    legs = (yes, no)
    return SpreadResult(
        type=ArbType.UNDERROUND,
        gross_spread=gross,
        legs=legs,
        max_deployable_usd=max_deployable(legs, limits),
    )


def cross_platform_spread(
    poly_market: Market,
    poly_snapshot: PriceSnapshot,
    kalshi_market: Market,
    kalshi_snapshot: PriceSnapshot,
    limits: CapitalLimits,
) -> SpreadResult | None:
    """Best of YES-on-one-venue plus NO-on-the-other, in both directions."""
    candidates: list[tuple[str, Leg, Leg]] = []
    for direction, poly_side, kalshi_side in (
        ("poly_yes_kalshi_no", "yes", "no"),
        ("poly_no_kalshi_yes", "no", "yes"),
    ):
        a = _leg(poly_market, poly_snapshot, poly_side, limits)
        b = _leg(kalshi_market, kalshi_snapshot, kalshi_side, limits)
        if a is not None and b is not None:
            candidates.append((direction, a, b))

    best: SpreadResult | None = None
    for direction, a, b in candidates:
        gross = 1 - (a.price + b.price)
        if gross <= 0:
            continue
        if best is None or gross > best.gross_spread:
            legs = (a, b)
            best = SpreadResult(
                type=ArbType.CROSS_PLATFORM,
                gross_spread=gross,
                legs=legs,
                max_deployable_usd=max_deployable(legs, limits),
                direction=direction,
            )
    return best
