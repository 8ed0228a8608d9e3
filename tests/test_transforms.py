import pytest

from pm_arb.schemas import Platform
from pm_arb.transforms import (
    calculate_spread,
    extract_event_name,
    format_volume,
    sum_volumes,
    transform_kalshi_volume,
    transform_polymarket_volume,
    validate_prices,
)


def test_polymarket_weekly_volume_to_daily():
    v = transform_polymarket_volume(70000, 1000000)
    assert v.volume_24h == 10000
    assert v.volume_all_time == 1000000
    assert transform_polymarket_volume(7.77, 100.5).volume_24h == pytest.approx(1.11, abs=0.01)


def test_volume_transforms_clamp_negative_and_missing():
    assert transform_polymarket_volume(-7000, -1000).volume_24h == 0
    assert transform_polymarket_volume(None, 500000).volume_all_time == 500000
    v = transform_kalshi_volume(-500, None)
    assert (v.volume_24h, v.volume_all_time) == (0, 0)
    assert transform_kalshi_volume(5000, 250000).volume_24h == 5000


def test_sum_volumes_mixed_inputs():
    assert sum_volumes([1000, "2000.50", None, None, 3000]) == pytest.approx(6000.5)
    assert sum_volumes(["not-a-number", 1000, float("nan")]) == 1000
    assert sum_volumes([]) == 0


@pytest.mark.parametrize(
    "volume,expected",
    [
        (1_500_000, "$1.5M"),
        (1_000_000, "$1.0M"),
        (10_000_000, "$10.0M"),
        (999_999, "$1000K"),
        (150_000, "$150K"),
        (1000, "$1K"),
        (999, "$999"),
        (0, "$0"),
    ],
)
def test_format_volume(volume, expected):
    assert format_volume(volume) == expected


def test_validate_prices_clamps_and_flags():
    p = validate_prices(1.5, 0.3)
    assert (p.yes_price, p.no_price, p.is_valid) == (1.0, 0.3, False)
    p = validate_prices(None, None)
    assert (p.yes_price, p.no_price, p.is_valid) == (0.0, 0.0, True)
    assert validate_prices(0.55, 0.55).is_valid is True


def test_calculate_spread():
    assert calculate_spread(0.5, 0.5) == 0
    assert calculate_spread(0.52, 0.52) == pytest.approx(-0.04)
    assert calculate_spread(0.64, 0.34) == pytest.approx(0.02)
    assert calculate_spread(0, 0) == 1


def test_kalshi_event_ids():
    g = extract_event_name("Will Chiefs win Super Bowl?", Platform.KALSHI, "KXSB-26")
    assert (g.key, g.name) == ("KXSB-26", "Super Bowl (KXSB-26)")
    g = extract_event_name("Some market", Platform.KALSHI, "UNKNOWN-EVENT-123")
    assert (g.key, g.name) == ("UNKNOWN-EVENT-123", "UNKNOWN-EVENT-123")


@pytest.mark.parametrize(
    "title,key,name",
    [
        ("Super Bowl 2026 Winner", "super-bowl-2026", "Super Bowl 2026"),
        ("2025 NBA Championship winner", "2025-nba-championship", "2025 NBA Championship"),
        (
            "2024 Democratic presidential nomination",
            "2024-democratic-presidential-nomination",
            "2024 Democratic Presidential nomination",
        ),
        ("Will the Fed raise interest rates in March?", "federal-reserve-rates", "Federal Reserve Rates"),
        ("Will $BTC hit $100k (again)?", "bitcoin-price", "Bitcoin Price"),
        ("ETH price prediction $10k", "ethereum-price", "Ethereum Price"),
        ("2024–25 English Premier League winner", "2024-25-english-premier-league", "2024-25 English Premier League"),
    ],
)
def test_title_patterns(title, key, name):
    g = extract_event_name(title, Platform.POLYMARKET, None)
    assert (g.key, g.name) == (key, name)


def test_fallback_grouping():
    g = extract_event_name("Will it rain tomorrow in New York City?", Platform.POLYMARKET, None)
    assert g.key.startswith("single-polymarket-")
    assert g.name == "Will it rain tomorrow in New York City"
    long = "This is a very long market title that exceeds sixty characters in length and should be truncated"
    assert len(extract_event_name(long, Platform.POLYMARKET, None).name) <= 60
    assert extract_event_name("   ", Platform.POLYMARKET, None).key == "unknown-polymarket"
    assert extract_event_name(None, Platform.POLYMARKET, None).name == "Unknown Market"
