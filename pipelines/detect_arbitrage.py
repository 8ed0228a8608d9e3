"""Run one arbitrage and volume-anomaly detection pass against Postgres."""
from __future__ import annotations

import asyncio

import structlog

from pm_arb.config import settings
from pm_arb.db import dispose_engine
from pm_arb.detection.cycle import run_detection
from pm_arb.logging import configure_from_settings
from pm_arb.schemas import RunStats

log = structlog.get_logger(__name__)


async def run() -> RunStats:
    stats = await run_detection()
    if stats.arbs_detected:
        log.info("arbitrage_opportunities_active", n=stats.arbs_detected, resolved=stats.arbs_resolved)
    else:
        log.info("arbitrage_no_opportunities", resolved=stats.arbs_resolved)
    return stats


async def _main() -> None:
    try:
        await run()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    configure_from_settings(settings.debug)
    asyncio.run(_main())
