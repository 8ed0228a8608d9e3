"""Opportunity lifecycle: absent -> active -> resolved.

A resolved record is terminal; a later qualifying observation for the same key
starts a fresh active record. :class:`OpportunityIndex` holds the active record
per key, so at most one active record per key exists by construction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

import structlog

from pm_arb.schemas import ArbOpportunity, ArbQuality, ArbType, OpportunityKey, ResolutionReason

log = structlog.get_logger(__name__)

DEFAULT_SANITY_CEILING_PCT = 100.0


class Action(str, Enum):
    ACTIVATE = "activate"
    REFRESH = "refresh"
    RESOLVE = "resolve"
    NOOP = "noop"


@dataclass(frozen=True)
class Candidate:
    """A classified, fee-netted spread observed in the current cycle."""

    key: OpportunityKey
    quality: ArbQuality
    gross_spread_pct: float
    total_fees_pct: float
    net_spread_pct: float
    max_deployable_usd: float
    capital_weighted_spread: float
    market_id: int | None = None
    market_pair_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    action: Action
    key: OpportunityKey
    record: ArbOpportunity | None = None
    reason: ResolutionReason | None = None


def _duration(detected_at: datetime, last_seen_at: datetime) -> int:
    return int((last_seen_at - detected_at).total_seconds())


def activate(candidate: Candidate, now: datetime) -> ArbOpportunity:
    return ArbOpportunity(
        type=candidate.key.type,
        quality=candidate.quality,
        market_id=candidate.market_id if candidate.key.type is ArbType.UNDERROUND else None,
        market_pair_id=candidate.market_pair_id if candidate.key.type is ArbType.CROSS_PLATFORM else None,
        gross_spread_pct=candidate.gross_spread_pct,
        total_fees_pct=candidate.total_fees_pct,
        net_spread_pct=candidate.net_spread_pct,
        max_deployable_usd=candidate.max_deployable_usd,
        capital_weighted_spread=candidate.capital_weighted_spread,
        detected_at=now,
        last_seen_at=now,
        snapshot_count=1,
        duration_seconds=0,
        details=candidate.details,
    )


def refresh(record: ArbOpportunity, candidate: Candidate, now: datetime) -> ArbOpportunity:
    # latest observation wins for every spread/liquidity field
    return record.model_copy(
        update={
            "quality": candidate.quality,
            "gross_spread_pct": candidate.gross_spread_pct,
            "total_fees_pct": candidate.total_fees_pct,
            "net_spread_pct": candidate.net_spread_pct,
            "max_deployable_usd": candidate.max_deployable_usd,
            "capital_weighted_spread": candidate.capital_weighted_spread,
            "details": candidate.details,
            "last_seen_at": now,
            "snapshot_count": record.snapshot_count + 1,
            "duration_seconds": _duration(record.detected_at, now),
        }
    )


def resolve(record: ArbOpportunity, reason: ResolutionReason, now: datetime) -> ArbOpportunity:
    return record.model_copy(update={"resolved_at": now, "resolution_reason": reason})


def transition(
    active: ArbOpportunity | None,
    candidate: Candidate | None,
    now: datetime,
    *,
    market_closed: bool = False,
    sanity_ceiling_pct: float = DEFAULT_SANITY_CEILING_PCT,
) -> tuple[Action, ArbOpportunity | None, ResolutionReason | None]:
    """Pure transition function for one key and one cycle's observation.

    ``candidate`` is None when the latest cycle shows no positive net spread.
    """
    if market_closed:
        reason = ResolutionReason.MARKET_CLOSED
    elif candidate is None:
        reason = ResolutionReason.SPREAD_GONE
    elif candidate.net_spread_pct > sanity_ceiling_pct:
        reason = ResolutionReason.SANITY_CEILING
    else:
        reason = None

    if reason is not None:
        if active is None:
            return Action.NOOP, None, reason
        return Action.RESOLVE, resolve(active, reason, now), reason

    assert candidate is not None
    if active is None:
        return Action.ACTIVATE, activate(candidate, now), None
    return Action.REFRESH, refresh(active, candidate, now), None


class OpportunityIndex:
    """Keyed map from (type, market|pair id) to the single active opportunity."""

    def __init__(self, records: Iterable[ArbOpportunity] = (), sanity_ceiling_pct: float = DEFAULT_SANITY_CEILING_PCT):
        self.sanity_ceiling_pct = sanity_ceiling_pct
        self._active: dict[OpportunityKey, ArbOpportunity] = {}
        for r in records:
            if not r.is_active:
                continue
            if r.key in self._active:
                raise ValueError(f"duplicate active opportunity for {r.key}")
            self._active[r.key] = r

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, key: OpportunityKey) -> bool:
        return key in self._active

    def get(self, key: OpportunityKey) -> ArbOpportunity | None:
        return self._active.get(key)

    def active(self) -> list[ArbOpportunity]:
        return list(self._active.values())

    def keys(self) -> set[OpportunityKey]:
        return set(self._active)

    def _apply(self, key: OpportunityKey, action: Action, record: ArbOpportunity | None, reason: ResolutionReason | None) -> Transition:
        if action in (Action.ACTIVATE, Action.REFRESH):
            assert record is not None
            self._active[key] = record
        elif action is Action.RESOLVE:
            self._active.pop(key, None)
        return Transition(action=action, key=key, record=record, reason=reason)

    def observe(
        self,
        key: OpportunityKey,
        candidate: Candidate | None,
        now: datetime,
        *,
        market_closed: bool = False,
    ) -> Transition:
        if candidate is not None and candidate.key != key:
            raise ValueError(f"candidate key {candidate.key} does not match {key}")
        action, record, reason = transition(
            self._active.get(key),
            candidate,
            now,
            market_closed=market_closed,
            sanity_ceiling_pct=self.sanity_ceiling_pct,
        )
        if action is Action.NOOP and reason is ResolutionReason.SANITY_CEILING:
            log.warning("arb_sanity_ceiling_ignored", key=str(key), net_spread_pct=candidate.net_spread_pct if candidate else None)
        return self._apply(key, action, record, reason)

    def resolve(self, key: OpportunityKey, reason: ResolutionReason, now: datetime) -> Transition:
        record = self._active.get(key)
        if record is None:
            return Transition(action=Action.NOOP, key=key, reason=reason)
        return self._apply(key, Action.RESOLVE, resolve(record, reason, now), reason)

    def resolve_insane(self, now: datetime) -> list[Transition]:
        """Force-resolve stored records whose net spread exceeds the sanity ceiling."""
        bogus = [k for k, r in self._active.items() if r.net_spread_pct > self.sanity_ceiling_pct]
        return [self.resolve(k, ResolutionReason.SANITY_CEILING, now) for k in bogus]

    def resolve_stale(self, now: datetime, stale_after: timedelta, exclude: Iterable[OpportunityKey] = ()) -> list[Transition]:
        """Resolve records not seen within ``stale_after``, except keys skipped this cycle."""
        skip = set(exclude)
        cutoff = now - stale_after
        stale = [k for k, r in self._active.items() if k not in skip and r.last_seen_at < cutoff]
        return [self.resolve(k, ResolutionReason.STALE, now) for k in stale]
