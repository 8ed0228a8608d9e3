from __future__ import annotations

import argparse
import asyncio

import structlog

from pm_arb import metrics
from pm_arb.config import settings
from pm_arb.db import dispose_engine
from pm_arb.detection.cycle import DetectionCycle
from pm_arb.errors import RunAlreadyActiveError
from pm_arb.logging import configure_from_settings
from pm_arb.repo.postgres import PostgresStore

log = structlog.get_logger(__name__)


async def run_once(cycle: DetectionCycle | None = None) -> None:
    cycle = cycle or DetectionCycle(PostgresStore())
    try:
        await cycle.run()
    except RunAlreadyActiveError as e:
        # another scheduler instance owns this tick
        log.warning("detection_run_skipped", reason=str(e), active_run_id=e.active_run_id)


async def run_scheduled(interval_sec: int) -> None:
    cycle = DetectionCycle(PostgresStore())
    while True:
        try:
            await run_once(cycle)
        except Exception:
            # already marked failed; keep the schedule alive
            log.exception("detection_tick_failed")
        await asyncio.sleep(interval_sec)


async def _main(mode: str, interval_sec: int) -> None:
    try:
        if mode == "once":
            await run_once()
        else:
            await run_scheduled(interval_sec)
    finally:
        await dispose_engine()


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--mode", choices=["once", "scheduled"], default="once")
    ap.add_argument("--interval-sec", type=int, default=settings.run_interval_sec)
    args = ap.parse_args()

    configure_from_settings(settings.debug)
    metrics.serve(settings.metrics_port)
    asyncio.run(_main(args.mode, args.interval_sec))


if __name__ == "__main__":
    main()
