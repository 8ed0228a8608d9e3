"""Data transformation helpers for venue volume/price fields and event grouping."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable

from pm_arb.schemas import Platform


@dataclass(frozen=True)
class VolumeData:
    volume_24h: float
    volume_all_time: float


@dataclass(frozen=True)
class PriceData:
    yes_price: float
    no_price: float
    is_valid: bool


@dataclass(frozen=True)
class EventGroup:
    key: str
    name: str


def transform_polymarket_volume(volume_1_week: float | None, volume_total: float | None) -> VolumeData:
    """Polymarket has no 24h figure; estimate it as weekly volume / 7."""
    volume_24h = (volume_1_week or 0.0) / 7
    return VolumeData(volume_24h=max(0.0, volume_24h), volume_all_time=max(0.0, volume_total or 0.0))


def transform_kalshi_volume(volume_24h: float | None, volume_all_time: float | None) -> VolumeData:
    return VolumeData(volume_24h=max(0.0, volume_24h or 0.0), volume_all_time=max(0.0, volume_all_time or 0.0))


def validate_prices(yes_price: float | None, no_price: float | None) -> PriceData:
    yes = yes_price if yes_price is not None else 0.0
    no = no_price if no_price is not None else 0.0
    is_valid = 0 <= yes <= 1 and 0 <= no <= 1
    return PriceData(
        yes_price=max(0.0, min(1.0, yes)),
        no_price=max(0.0, min(1.0, no)),
        is_valid=is_valid,
    )


def calculate_spread(yes_bid: float, no_bid: float) -> float:
    """Book spread from bids; negative means the bids overlap."""
    return 1 - yes_bid - no_bid


def _to_float(v: float | int | str | None) -> float:
    if v is None:
        return 0.0
    if isinstance(v, str):
        try:
            v = float(v)
        except ValueError:
            return 0.0
    v = float(v)
    return 0.0 if math.isnan(v) else v


def sum_volumes(volumes: Iterable[float | int | str | None]) -> float:
    """Sum volumes, treating None, NaN and unparseable strings as 0."""
    return sum((_to_float(v) for v in volumes), 0.0)


def format_volume(volume: float) -> str:
    if volume >= 1_000_000:
        return f"${volume / 1_000_000:.1f}M"
    if volume >= 1_000:
        return f"${volume / 1_000:.0f}K"
    return f"${volume:.0f}"


KALSHI_EVENT_PREFIXES: dict[str, str] = {
    "KXSB": "Super Bowl",
    "KXNCAAF": "College Football Playoff",
    "KXNBACHAMP": "NBA Championship",
    "KXNFLGAME": "NFL Game",
    "KXNBAGAME": "NBA Game",
    "KXBTCMAXY": "Bitcoin Maximum",
    "KXBTCMINY": "Bitcoin Minimum",
    "KXETHMAXY": "Ethereum Maximum",
    "KXRATECUTCOUNT": "Fed Rate Cuts",
    "KXLLM": "AI Models",
}

# (pattern, group template); \1.. are filled from the match
TITLE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(Democrats|Republicans)\b.*(\d{4}) US presidential election", re.I), r"\2 US Presidential Election (Party)"),
    (re.compile(r"(\d{4}) US presidential election", re.I), r"\1 US Presidential Election (Candidate)"),
    (re.compile(r"(\d{4}) (Democratic|Republican) presidential (nomination|primary)", re.I), r"\1 \2 Presidential \3"),
    (re.compile(r"Super Bowl (\d{4})", re.I), r"Super Bowl \1"),
    (re.compile(r"(\d{4}) (NBA|NFL|MLB|NHL) (Finals|Championship|Playoffs)", re.I), r"\1 \2 \3"),
    (
        re.compile(r"(\d{4})[–-](\d{2,4}) (English Premier League|Champions League|La Liga|Serie A|Bundesliga)", re.I),
        r"\1-\2 \3",
    ),
    (re.compile(r"(Fed|Federal Reserve).*(rate|interest)", re.I), "Federal Reserve Rates"),
    (re.compile(r"Trump.*Fed", re.I), "Trump & Federal Reserve"),
    (re.compile(r"(Bitcoin|BTC).*(price|\$)", re.I), "Bitcoin Price"),
    (re.compile(r"(Ethereum|ETH).*(price|\$)", re.I), "Ethereum Price"),
]


def _slug(s: str) -> str:
    return re.sub(r"\s+", "-", s.lower())


def extract_event_name(title: str | None, platform: Platform, event_id: str | None) -> EventGroup:
    """Group a market under an event key for display and multi-market views."""
    if not title or not title.strip():
        return EventGroup(key=f"unknown-{platform.value}", name="Unknown Market")

    if platform is Platform.KALSHI and event_id:
        for prefix, name in KALSHI_EVENT_PREFIXES.items():
            if event_id.startswith(prefix):
                return EventGroup(key=event_id, name=f"{name} ({event_id})")
        return EventGroup(key=event_id, name=event_id)

    for regex, template in TITLE_PATTERNS:
        m = regex.search(title)
        if m:
            name = m.expand(template)
            return EventGroup(key=_slug(name), name=name)

    short = title.split("?")[0][:60].strip()
    return EventGroup(key=f"single-{platform.value}-{_slug(short)[:30]}", name=short)
