"""
Tests for the population scheduler.

Validates cadence handling, graceful shutdown, and error survival.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from popradar.config import settings
from popradar.pipeline.scheduler import PopulationScheduler


async def _run_until(scheduler: PopulationScheduler, condition, timeout: float = 2.0) -> None:
    """Run the scheduler loop until `condition()` holds, then shut it down."""
    task = asyncio.create_task(scheduler.run())
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition() and loop.time() < deadline:
        await asyncio.sleep(0.01)
    await scheduler.shutdown()
    await asyncio.wait_for(task, timeout=timeout)


class TestPopulationScheduler:
    def test_init(self) -> None:
        scheduler = PopulationScheduler(AsyncMock(), job=AsyncMock())
        assert scheduler._cadence_minutes == settings.POPULATION_POLL_INTERVAL_HOURS * 60
        assert scheduler._should_poll() is True

    def test_deferred_first_run(self) -> None:
        scheduler = PopulationScheduler(AsyncMock(), job=AsyncMock(), run_immediately=False)
        assert scheduler._should_poll() is False

    def test_poll_due_after_cadence(self) -> None:
        scheduler = PopulationScheduler(AsyncMock(), job=AsyncMock(), run_immediately=False)
        scheduler._last_poll = datetime.now(timezone.utc) - timedelta(
            hours=settings.POPULATION_POLL_INTERVAL_HOURS, minutes=1
        )
        assert scheduler._should_poll() is True

    async def test_runs_job_once_per_cadence(self) -> None:
        session_factory = AsyncMock()
        job = AsyncMock(return_value=12)
        scheduler = PopulationScheduler(session_factory, job=job, poll_check_interval=0.01)

        await _run_until(scheduler, lambda: job.await_count >= 1)
        await asyncio.sleep(0)

        job.assert_awaited_once_with(session_factory)
        assert scheduler._should_poll() is False

    async def test_job_failure_does_not_stop_loop(self) -> None:
        job = AsyncMock(side_effect=RuntimeError("browser crashed"))
        scheduler = PopulationScheduler(AsyncMock(), job=job, poll_check_interval=0.01)

        await _run_until(scheduler, lambda: job.await_count >= 1)

        assert job.await_count == 1
        assert scheduler._last_poll is not None

    async def test_shutdown_before_start(self) -> None:
        job = AsyncMock(return_value=0)
        scheduler = PopulationScheduler(AsyncMock(), job=job, poll_check_interval=0.01)
        await scheduler.shutdown()

        await asyncio.wait_for(scheduler.run(), timeout=1.0)

        job.assert_not_awaited()

    async def test_short_cadence_repolls(self) -> None:
        job = AsyncMock(return_value=0)
        scheduler = PopulationScheduler(AsyncMock(), job=job, poll_check_interval=0.01)
        scheduler._cadence_minutes = 0

        await _run_until(scheduler, lambda: job.await_count >= 3)

        assert job.await_count >= 3
