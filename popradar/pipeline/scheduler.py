"""
Pop Radar - Population Scheduler

Runs the population update job on a fixed cadence
(POPULATION_POLL_INTERVAL_HOURS, daily by default) until shutdown is
signaled. Population counts change slowly; there is no burst mode.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from popradar.config import settings
from popradar.pipeline.population import run_population_update

logger = structlog.get_logger(__name__)

PopulationJob = Callable[[async_sessionmaker[AsyncSession]], Awaitable[int]]


class PopulationScheduler:
    """
    Async scheduler for the population update job.

    The first run happens immediately unless run_immediately is False.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job: PopulationJob = run_population_update,
        run_immediately: bool = True,
        poll_check_interval: float = 5,
    ):
        self.session_factory = session_factory
        self._job = job
        self._poll_check_interval = poll_check_interval
        self._shutdown_event = asyncio.Event()
        self._cadence_minutes = settings.POPULATION_POLL_INTERVAL_HOURS * 60
        self._last_poll: datetime | None = None if run_immediately else datetime.now(timezone.utc)

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        logger.info("scheduler_shutdown_requested")
        self._shutdown_event.set()

    def _should_poll(self) -> bool:
        if self._last_poll is None:
            return True
        elapsed_minutes = (datetime.now(timezone.utc) - self._last_poll).total_seconds() / 60
        return elapsed_minutes >= self._cadence_minutes

    async def _poll(self) -> int:
        logger.info("scheduler_population_poll_start")
        try:
            rowcount = await self._job(self.session_factory)
        finally:
            self._last_poll = datetime.now(timezone.utc)

        logger.info(
            "scheduler_population_poll_complete",
            rowcount=rowcount,
            next_poll_in_hours=settings.POPULATION_POLL_INTERVAL_HOURS,
        )
        return rowcount

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled.

        A failed poll is logged and retried on the next cadence.
        """
        logger.info(
            "scheduler_started",
            population_cadence_hours=settings.POPULATION_POLL_INTERVAL_HOURS,
        )

        try:
            while not self._shutdown_event.is_set():
                try:
                    if self._should_poll():
                        await self._poll()

                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self._poll_check_interval,
                    )
                except asyncio.TimeoutError:
                    continue
                except Exception as e:
                    logger.error(
                        "scheduler_unknown_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(self._poll_check_interval)

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            logger.info("scheduler_stopped")


async def run_scheduler(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """
    Initialize and run the scheduler with graceful shutdown handling.

    Registers SIGTERM/SIGINT handlers to trigger shutdown.
    """
    scheduler = PopulationScheduler(session_factory)

    def handle_signal(_signum: int, _frame: Any) -> None:
        logger.info("scheduler_signal_received")
        asyncio.create_task(scheduler.shutdown())

    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM, None)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT, None)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler for all signals
        logger.warning("signal_handlers_not_supported_on_platform")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_fatal_error", error=str(e), error_type=type(e).__name__)
        raise
