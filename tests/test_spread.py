from datetime import datetime, timezone

import pytest

from pm_arb.arbitrage.spread import (
    CapitalLimits,
    capital_weighted_spread,
    cross_platform_spread,
    leg_liquidity,
    underround_spread,
)
from pm_arb.schemas import ArbType, Market, MarketStatus, Platform, PriceSnapshot

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
LIMITS = CapitalLimits(max_position_usd=10_000, liquidity_cap_usd=50_000, reference_capital_usd=1_000)


def market(id_, platform):
    return Market(id=id_, platform=platform, platform_id=f"m{id_}", title="t", status=MarketStatus.OPEN)


def snap(market_id, **kw):
    kw.setdefault("yes_price", 0.5)
    kw.setdefault("no_price", 0.5)
    return PriceSnapshot(market_id=market_id, snapshot_at=NOW, **kw)


@pytest.mark.parametrize("yes,no", [(0.45, 0.50), (0.10, 0.20), (0.49, 0.50)])
def test_underround_gross_is_one_minus_asks(yes, no):
    r = underround_spread(market(1, Platform.POLYMARKET), snap(1, yes_ask=yes, no_ask=no), LIMITS)
    assert r is not None
    assert r.type is ArbType.UNDERROUND
    assert r.gross_spread == pytest.approx(1 - (yes + no))
    assert r.gross_spread_pct == pytest.approx((1 - (yes + no)) * 100)


@pytest.mark.parametrize("yes,no", [(0.5, 0.5), (0.55, 0.5), (0.0, 0.5), (1.0, 0.0)])
def test_underround_non_positive_or_unusable_is_none(yes, no):
    assert underround_spread(market(1, Platform.KALSHI), snap(1, yes_ask=yes, no_ask=no), LIMITS) is None


def test_underround_falls_back_to_side_prices():
    r = underround_spread(market(1, Platform.POLYMARKET), snap(1, yes_price=0.4, no_price=0.5), LIMITS)
    assert r is not None
    assert r.gross_spread == pytest.approx(0.1)


def test_cross_platform_picks_best_direction():
    poly = market(1, Platform.POLYMARKET)
    kalshi = market(2, Platform.KALSHI)
    r = cross_platform_spread(
        poly, snap(1, yes_price=0.30, no_price=0.70), kalshi, snap(2, yes_price=0.65, no_price=0.35), LIMITS
    )
    assert r is not None
    assert r.direction == "poly_yes_kalshi_no"
    assert r.gross_spread_pct == pytest.approx(35.0)
    assert [(leg.platform, leg.side) for leg in r.legs] == [(Platform.POLYMARKET, "yes"), (Platform.KALSHI, "no")]
    assert "Buy YES @ 0.30 on polymarket" in r.strategy()

    r = cross_platform_spread(
        poly, snap(1, yes_price=0.70, no_price=0.25), kalshi, snap(2, yes_price=0.60, no_price=0.40), LIMITS
    )
    assert r is not None
    assert r.direction == "poly_no_kalshi_yes"
    assert r.gross_spread == pytest.approx(0.15)


def test_cross_platform_none_when_no_positive_direction():
    r = cross_platform_spread(
        market(1, Platform.POLYMARKET),
        snap(1, yes_price=0.5, no_price=0.5),
        market(2, Platform.KALSHI),
        snap(2, yes_price=0.5, no_price=0.5),
        LIMITS,
    )
    assert r is None


def test_deployable_uses_ask_size_then_volume_proxy():
    s = snap(1, yes_ask=0.4, no_ask=0.5, yes_ask_size=2_000, volume_24h=100_000)
    assert leg_liquidity(s, "yes", LIMITS) == 2_000
    assert leg_liquidity(s, "no", LIMITS) == pytest.approx(1_000)  # 1% of 24h volume
    r = underround_spread(market(1, Platform.POLYMARKET), s, LIMITS)
    assert r is not None
    assert r.max_deployable_usd == pytest.approx(1_000)


def test_deployable_capped():
    s = snap(1, yes_ask=0.4, no_ask=0.5, yes_ask_size=1_000_000, no_ask_size=80_000)
    r = underround_spread(market(1, Platform.POLYMARKET), s, LIMITS)
    assert r is not None
    assert r.max_deployable_usd == 10_000


def test_capital_weighted_spread():
    assert capital_weighted_spread(10.0, 500, 1_000) == pytest.approx(5.0)
    assert capital_weighted_spread(10.0, 5_000, 1_000) == pytest.approx(10.0)
    assert capital_weighted_spread(10.0, 5_000, 0) == 0.0
