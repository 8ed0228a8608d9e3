"""Fee model: converts a gross arbitrage spread into a net spread.

Fee schedules are read from ``platform_config`` once per detection run and
passed around as an immutable :class:`FeeConfig`, so every evaluation in a run
nets against the same basis.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Literal, Mapping

from pm_arb.errors import FeeConfigUnavailableError
from pm_arb.schemas import FeeSchedule, Platform

SettlementMode = Literal["unconditional", "probability_weighted"]

# Seeded into platform_config by the initial migration
DEFAULT_FEE_SCHEDULES: tuple[FeeSchedule, ...] = (
    FeeSchedule(
        platform=Platform.POLYMARKET,
        taker_fee_pct=0.02,
        fee_notes="Approx 2% spread-based fee, varies by market liquidity",
    ),
    FeeSchedule(
        platform=Platform.KALSHI,
        taker_fee_pct=0.01,
        fee_notes="Approximately $0.01-0.02 per contract, modeled as 1%",
    ),
)


@dataclass(frozen=True)
class FeeConfig:
    schedules: Mapping[Platform, FeeSchedule]
    loaded_at: datetime | None = None

    @classmethod
    def from_schedules(cls, schedules: Iterable[FeeSchedule], loaded_at: datetime | None = None) -> "FeeConfig":
        return cls(schedules=MappingProxyType({s.platform: s for s in schedules}), loaded_at=loaded_at)

    def schedule(self, platform: Platform) -> FeeSchedule:
        try:
            return self.schedules[platform]
        except KeyError:
            raise FeeConfigUnavailableError(platform.value) from None

    def has(self, platform: Platform) -> bool:
        return platform in self.schedules


@dataclass(frozen=True)
class FeeLeg:
    platform: Platform
    price: float  # probability paid for this leg


@dataclass(frozen=True)
class NetSpread:
    gross_spread_pct: float
    total_fees_pct: float
    net_spread_pct: float
    leg_fees_pct: tuple[float, ...] = field(default=())


def leg_fee(schedule: FeeSchedule, price: float, settlement_mode: SettlementMode = "unconditional") -> float:
    """Fee fraction for one taker leg: opening fee plus expected settlement fee."""
    if settlement_mode == "unconditional":
        settlement = schedule.settlement_fee_pct
    elif settlement_mode == "probability_weighted":
        settlement = price * schedule.settlement_fee_pct
    else:
        raise ValueError(f"unknown settlement mode: {settlement_mode}")
    return schedule.taker_fee_pct + settlement


def net_spread(
    gross_spread_pct: float,
    legs: Iterable[FeeLeg],
    fee_config: FeeConfig,
    settlement_mode: SettlementMode = "unconditional",
) -> NetSpread:
    """Net a gross spread (percent units) against the fees of every leg.

    Raises FeeConfigUnavailableError when any leg's platform has no schedule.
    """
    leg_fees = tuple(leg_fee(fee_config.schedule(leg.platform), leg.price, settlement_mode) * 100 for leg in legs)
    total_fees_pct = sum(leg_fees)
    return NetSpread(
        gross_spread_pct=gross_spread_pct,
        total_fees_pct=total_fees_pct,
        net_spread_pct=gross_spread_pct - total_fees_pct,
        leg_fees_pct=leg_fees,
    )
