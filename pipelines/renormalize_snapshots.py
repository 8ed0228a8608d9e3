"""Rewrite legacy Kalshi snapshot rows still stored in cents.

Safe to re-run: normalization is idempotent and only rows with a price above 1
are selected.
"""
from __future__ import annotations

import argparse
import asyncio

import structlog

from pm_arb.config import settings
from pm_arb.db import dispose_engine, get_session
from pm_arb.logging import configure_from_settings
from pm_arb.repo.snapshots import renormalize_kalshi_batch

log = structlog.get_logger(__name__)


async def run(batch_size: int = 1000, dry_run: bool = False) -> int:
    total = 0
    while True:
        async with get_session() as session:
            n = await renormalize_kalshi_batch(session, limit=batch_size)
            if dry_run:
                await session.rollback()
                log.info("renormalize_dry_run", would_fix=n)
                return n
            await session.commit()
        total += n
        if n < batch_size:
            break
    log.info("renormalize_done", fixed=total)
    return total


async def _main(batch_size: int, dry_run: bool) -> None:
    try:
        await run(batch_size, dry_run)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--batch-size", type=int, default=1000)
    ap.add_argument("--dry-run", action="store_true")
    args = ap.parse_args()
    configure_from_settings(settings.debug)
    asyncio.run(_main(args.batch_size, args.dry_run))
