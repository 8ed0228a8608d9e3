from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pm_arb.fees import FeeConfig
from pm_arb.schemas import ArbOpportunity, Market, MarketPair, PriceSnapshot, RunStats, VolumeAlert


class MarketCatalog(ABC):
    @abstractmethod
    async def list_markets(self) -> list[Market]:
        """Open markets plus any market referenced by a confirmed pair or an active opportunity."""
        raise NotImplementedError


class SnapshotSource(ABC):
    @abstractmethod
    async def latest_snapshot(self, market_id: int) -> PriceSnapshot | None:
        raise NotImplementedError

    @abstractmethod
    async def volume_history(self, market_id: int, since: datetime, until: datetime) -> list[tuple[datetime, float]]:
        """(snapshot_at, volume_24h) points with since <= snapshot_at < until, oldest first."""
        raise NotImplementedError


class PairingSource(ABC):
    @abstractmethod
    async def confirmed_pairs(self) -> list[MarketPair]:
        raise NotImplementedError


class FeeConfigSource(ABC):
    @abstractmethod
    async def load_fee_config(self) -> FeeConfig:
        raise NotImplementedError


class OpportunitySink(ABC):
    @abstractmethod
    async def load_active_opportunities(self) -> list[ArbOpportunity]:
        raise NotImplementedError

    @abstractmethod
    async def upsert_opportunity(self, record: ArbOpportunity) -> int:
        """Insert-or-refresh the active record for the record's key; returns its id."""
        raise NotImplementedError

    @abstractmethod
    async def resolve_opportunity(self, record: ArbOpportunity) -> None:
        raise NotImplementedError


class AlertSink(ABC):
    @abstractmethod
    async def append_volume_alert(self, alert: VolumeAlert) -> bool:
        """Append an alert; False when this snapshot already produced one."""
        raise NotImplementedError


class RunCoordinator(ABC):
    @abstractmethod
    async def is_run_active(self, run_type: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def mark_run_started(self, run_type: str) -> int:
        """Record a running run; raises RunAlreadyActiveError if one is in flight."""
        raise NotImplementedError

    @abstractmethod
    async def mark_run_completed(self, run_id: int, stats: RunStats) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_run_failed(self, run_id: int, error: str) -> None:
        raise NotImplementedError


class DetectionStore(
    MarketCatalog,
    SnapshotSource,
    PairingSource,
    FeeConfigSource,
    OpportunitySink,
    AlertSink,
    RunCoordinator,
    ABC,
):
    """Every collaborator a detection run needs, behind one object."""
