"""
Pop Radar - Population Scraper Runner (Session Orchestrator)

Single entry point for one population scrape:

    result = await fetch_population(url)

Owns the ScrapeState, the two watchdogs, and the browser session. Always
returns a PopulationResult, never raises: on any failure the records
collected so far are returned. `records_filtered < records_total` signals a
partial result.
"""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Callable
from functools import partial
from typing import Any

import structlog

from popradar.config import settings
from popradar.scraper import PopulationResult, ScrapeState
from popradar.scraper.anti_detect import AntiDetect
from popradar.scraper.browser import BrowserManager, take_debug_screenshot
from popradar.scraper.dedup import remove_duplicates
from popradar.scraper.dom_fallback import (
    extract_page_size_from_dom,
    extract_total_records_from_dom,
)
from popradar.scraper.errors import GlobalTimeoutExceeded
from popradar.scraper.network_intercept import InterceptResult, ResponseInterceptor
from popradar.scraper.normalizer import format_response_data
from popradar.scraper.pagination import PaginationController, compute_page_bound

logger = structlog.get_logger(__name__)


def _force_exit() -> None:
    logger.critical(
        "population_force_exit",
        timeout_seconds=settings.FORCE_EXIT_TIMEOUT_SECONDS,
        source="scraper_runner",
    )
    os._exit(1)


def start_force_exit_watchdog(
    timeout: float | None = None,
    action: Callable[[], None] = _force_exit,
) -> threading.Timer:
    """
    Start the last-resort watchdog.

    Runs on its own thread so it still fires if the event loop is wedged.
    Firing means something hung past every other timeout.
    """
    watchdog = threading.Timer(
        settings.FORCE_EXIT_TIMEOUT_SECONDS if timeout is None else timeout,
        action,
    )
    watchdog.daemon = True
    watchdog.start()
    return watchdog


class PopulationScraper:
    """
    Runs the interception/pagination/fallback pipeline for one URL.

    Usage:
        scraper = PopulationScraper()
        result = await scraper.fetch(url)
    """

    def __init__(
        self,
        browser_factory: Callable[..., Any] | None = None,
        anti_detect: AntiDetect | None = None,
    ) -> None:
        self._browser_factory = browser_factory or BrowserManager
        self.anti_detect = anti_detect or AntiDetect()

    async def fetch(self, url: str) -> PopulationResult:
        """
        Scrape every reachable table page of `url`.

        Args:
            url: Population page URL.

        Returns:
            Deduplicated records plus the expected total, possibly partial.
        """
        logger.info("population_fetch_start", url=url, source="scraper_runner")

        state = ScrapeState()
        watchdog = start_force_exit_watchdog()
        manager = self._browser_factory(anti_detect=self.anti_detect)
        task: asyncio.Task[None] | None = None

        try:
            task = asyncio.create_task(self._scrape(url, state, manager))
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=settings.GLOBAL_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                state.timed_out = True
                logger.error(
                    "population_global_timeout",
                    timeout_seconds=settings.GLOBAL_TIMEOUT_SECONDS,
                    collected=len(state.collected),
                    source="scraper_runner",
                )
                try:
                    await asyncio.wait_for(task, timeout=settings.GLOBAL_TIMEOUT_GRACE_SECONDS)
                except asyncio.TimeoutError:
                    logger.error("population_scrape_cancelled", source="scraper_runner")
        except Exception as e:
            logger.error(
                "population_fetch_failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
                current_page=state.current_page,
                total_records=state.total_records,
                page_size=state.page_size,
                collected=len(state.collected),
                source="scraper_runner",
            )
        finally:
            watchdog.cancel()
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    logger.debug("population_scrape_task_cancelled", source="scraper_runner")
            await manager.close()

        return self._build_result(state)

    async def _scrape(self, url: str, state: ScrapeState, manager: Any) -> None:
        await manager.open()
        page = await manager.new_page()

        interceptor = ResponseInterceptor()
        try:
            await self._paginate(url, state, page, interceptor)
        finally:
            await interceptor.close()

    async def _paginate(self, url: str, state: ScrapeState, page: Any, interceptor: ResponseInterceptor) -> None:
        controller = PaginationController(
            page,
            url,
            state,
            interceptor,
            on_result=partial(self.handle_intercept, state, interceptor),
            anti_detect=self.anti_detect,
        )

        await controller.process_page(1, settings.INITIAL_RESPONSE_TIMEOUT_SECONDS)
        await take_debug_screenshot(page, "population-page-initial-load")

        await self._resolve_dimensions(page, state)
        bound = compute_page_bound(state.total_records, state.page_size, len(state.collected))
        logger.info(
            "population_page_bound",
            total_records=state.total_records,
            page_size=state.page_size,
            pages=bound,
            source="scraper_runner",
        )

        try:
            await controller.run(2, bound)
        except GlobalTimeoutExceeded as e:
            logger.warning("population_pagination_truncated", reason=str(e), source="scraper_runner")

    @staticmethod
    def handle_intercept(
        state: ScrapeState,
        interceptor: ResponseInterceptor,
        result: InterceptResult,
    ) -> None:
        """
        Fold one intercepted response into the scrape state.

        Fields are updated before pending_response is cleared. Responses that
        belong to an earlier arm still contribute records but do not count
        toward the current page.
        """
        current = result.expected_page == interceptor.armed_page
        parsed = result.parsed

        if parsed is not None:
            state.set_total_records(parsed.records_total or 0)
            if result.expected_page == 1:
                state.set_page_size(parsed.page_size)

            records = format_response_data(parsed.data)
            state.append(records)
            if current:
                state.intercepted_count += len(records)
            if not records:
                logger.warning(
                    "population_intercept_no_valid_items",
                    expected_page=result.expected_page,
                    source="scraper_runner",
                )
        else:
            logger.info(
                "population_intercept_empty",
                expected_page=result.expected_page,
                source="scraper_runner",
            )

        if current:
            state.pending_response = False

    async def _resolve_dimensions(self, page: Any, state: ScrapeState) -> None:
        """Fill in total records and page size when the API did not provide them."""
        if state.total_records == 0:
            if state.set_total_records(await extract_total_records_from_dom(page)):
                logger.info("population_total_from_dom", total_records=state.total_records, source="scraper_runner")
            else:
                logger.warning("population_total_unknown", source="scraper_runner")

        if state.page_size > 0:
            return

        collected = len(state.collected)
        if collected and 0 < state.total_records and collected <= state.total_records:
            state.set_page_size(collected)
        elif state.set_page_size(await extract_page_size_from_dom(page)):
            pass
        elif state.intercepted_count > 0:
            state.set_page_size(state.intercepted_count)
        elif collected:
            state.set_page_size(collected)
        else:
            state.set_page_size(settings.DEFAULT_PAGE_SIZE)
        logger.info("population_page_size_resolved", page_size=state.page_size, source="scraper_runner")

    def _build_result(self, state: ScrapeState) -> PopulationResult:
        records = remove_duplicates(state.collected)
        records_total = state.total_records or len(records)

        if state.total_records > 0 and len(records) != state.total_records:
            logger.warning(
                "population_count_mismatch",
                expected=state.total_records,
                collected=len(records),
                source="scraper_runner",
            )
        logger.info(
            "population_fetch_complete",
            records=len(records),
            records_total=records_total,
            pages_processed=state.pages_processed,
            timed_out=state.timed_out,
            source="scraper_runner",
        )
        return PopulationResult(
            records=records,
            records_total=records_total,
            records_filtered=len(records),
            timed_out=state.timed_out,
            pages_processed=state.pages_processed,
        )


async def fetch_population(url: str) -> PopulationResult:
    """Fetch population data for one URL with a fresh browser session."""
    return await PopulationScraper().fetch(url)
