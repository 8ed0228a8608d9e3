"""Single-market and cross-platform arbitrage detection."""
from __future__ import annotations

import structlog

from pm_arb.arbitrage.classifier import ClassifierThresholds, classify
from pm_arb.arbitrage.lifecycle import Candidate
from pm_arb.arbitrage.spread import (
    CapitalLimits,
    SpreadResult,
    capital_weighted_spread,
    cross_platform_spread,
    underround_spread,
)
from pm_arb.config import Settings
from pm_arb.fees import FeeConfig, FeeLeg, SettlementMode, net_spread
from pm_arb.schemas import ArbType, Market, MarketPair, OpportunityKey, PriceSnapshot

log = structlog.get_logger(__name__)


class ArbitrageDetector:
    """Turns current best prices into fee-netted, classified candidates."""

    def __init__(
        self,
        thresholds: ClassifierThresholds | None = None,
        limits: CapitalLimits | None = None,
        settlement_mode: SettlementMode = "unconditional",
    ):
        self.thresholds = thresholds or ClassifierThresholds()
        self.limits = limits or CapitalLimits()
        self.settlement_mode = settlement_mode

    @classmethod
    def from_settings(cls, s: Settings) -> "ArbitrageDetector":
        return cls(
            thresholds=ClassifierThresholds.from_settings(s),
            limits=CapitalLimits.from_settings(s),
            settlement_mode=s.settlement_fee_mode,
        )

    def _candidate(
        self,
        key: OpportunityKey,
        spread: SpreadResult,
        fee_config: FeeConfig,
        *,
        market_id: int | None = None,
        market_pair_id: int | None = None,
    ) -> Candidate | None:
        netted = net_spread(
            spread.gross_spread_pct,
            [FeeLeg(leg.platform, leg.price) for leg in spread.legs],
            fee_config,
            self.settlement_mode,
        )
        quality = classify(netted.net_spread_pct, spread.max_deployable_usd, self.thresholds)
        if quality is None:
            return None
        return Candidate(
            key=key,
            quality=quality,
            gross_spread_pct=netted.gross_spread_pct,
            total_fees_pct=netted.total_fees_pct,
            net_spread_pct=netted.net_spread_pct,
            max_deployable_usd=spread.max_deployable_usd,
            capital_weighted_spread=capital_weighted_spread(
                netted.net_spread_pct, spread.max_deployable_usd, self.limits.reference_capital_usd
            ),
            market_id=market_id,
            market_pair_id=market_pair_id,
            details={
                "direction": spread.direction,
                "strategy": spread.strategy(),
                "legs": [leg.as_dict() for leg in spread.legs],
                "leg_fees_pct": list(netted.leg_fees_pct),
            },
        )

    def evaluate_underround(self, market: Market, snapshot: PriceSnapshot, fee_config: FeeConfig) -> Candidate | None:
        """Candidate for a single market, or None when there is no positive net spread.

        Raises FeeConfigUnavailableError when the market's platform has no fee schedule.
        """
        spread = underround_spread(market, snapshot, self.limits)
        if spread is None:
            return None
        return self._candidate(OpportunityKey(ArbType.UNDERROUND, market.id), spread, fee_config, market_id=market.id)

    def evaluate_cross_platform(
        self,
        pair: MarketPair,
        poly_market: Market,
        poly_snapshot: PriceSnapshot,
        kalshi_market: Market,
        kalshi_snapshot: PriceSnapshot,
        fee_config: FeeConfig,
    ) -> Candidate | None:
        spread = cross_platform_spread(poly_market, poly_snapshot, kalshi_market, kalshi_snapshot, self.limits)
        if spread is None:
            return None
        candidate = self._candidate(
            OpportunityKey(ArbType.CROSS_PLATFORM, pair.id), spread, fee_config, market_pair_id=pair.id
        )
        if candidate is not None:
            candidate.details.update(
                {
                    "poly_market_id": poly_market.id,
                    "kalshi_market_id": kalshi_market.id,
                    "poly_title": poly_market.title,
                    "kalshi_title": kalshi_market.title,
                    "poly_platform_id": poly_market.platform_id,
                    "kalshi_platform_id": kalshi_market.platform_id,
                }
            )
        return candidate
