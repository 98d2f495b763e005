from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from .market_sync import SyncOutcome, run_market_sync

JOB_ID = "market_sync"


class MarketSyncScheduler:
    """Run reconciliation cycles on a fixed interval in a background thread.

    Only one scheduled cycle runs at a time; manual triggers are not
    coordinated with it.
    """

    def __init__(
        self,
        *,
        interval_seconds: int,
        runner: Callable[[], SyncOutcome] = run_market_sync,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be >= 1")
        self.interval_seconds = interval_seconds
        self._runner = runner
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self.running:
            logger.warning("Market sync schedule already running")
            return
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Market sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Market sync scheduled every {} seconds", self.interval_seconds)

    def shutdown(self, wait: bool = False) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Market sync schedule stopped")

    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def run_once(self) -> SyncOutcome:
        outcome = self._runner()
        if outcome.success and outcome.result is not None:
            logger.info(
                "Scheduled market sync finished: {} updated, {} errors, {} shocks",
                outcome.result.updated,
                outcome.result.errors,
                outcome.result.shocks,
            )
        else:
            logger.error("Scheduled market sync failed: {}", outcome.error)
        return outcome


__all__ = ["JOB_ID", "MarketSyncScheduler"]
