from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from pipelines.market_sync import SyncOutcome, SyncResult
from pipelines.scheduler import JOB_ID, MarketSyncScheduler


def test_start_registers_single_instance_interval_job():
    backend = MagicMock()
    backend.running = False
    scheduler = MarketSyncScheduler(interval_seconds=60, runner=MagicMock(), scheduler=backend)

    scheduler.start()

    backend.add_job.assert_called_once()
    kwargs = backend.add_job.call_args.kwargs
    assert kwargs["id"] == JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["trigger"].interval.total_seconds() == 60
    backend.start.assert_called_once()


def test_run_once_returns_outcome_without_raising():
    failure = SyncOutcome(success=False, timestamp=datetime.now(timezone.utc), error="boom")
    success = SyncOutcome(
        success=True, timestamp=datetime.now(timezone.utc), result=SyncResult(updated=2)
    )
    runner = MagicMock(side_effect=[failure, success])
    scheduler = MarketSyncScheduler(interval_seconds=5, runner=runner, scheduler=MagicMock())

    assert scheduler.run_once() is failure
    assert scheduler.run_once() is success


def test_shutdown_only_when_running():
    backend = MagicMock()
    backend.running = False
    scheduler = MarketSyncScheduler(interval_seconds=5, runner=MagicMock(), scheduler=backend)

    scheduler.shutdown()
    backend.shutdown.assert_not_called()

    backend.running = True
    scheduler.shutdown()
    backend.shutdown.assert_called_once_with(wait=False)


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        MarketSyncScheduler(interval_seconds=0, runner=MagicMock())
