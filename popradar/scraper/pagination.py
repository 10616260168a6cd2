"""
Pop Radar - Pagination Controller

Walks the population table page by page. Pages are strictly sequential:
each navigation depends on the table's current UI state.

Per page:
1. reset per-page interception counters and re-arm the interceptor
2. navigate (URL load for page 1, next/page-select control afterwards)
3. wait out a challenge once, then give up on the page (page 1 still
   waits for its response)
4. verify the UI page indicator
5. wait (bounded) for the intercepted response
6. fall back to the DOM if nothing was intercepted
"""

from __future__ import annotations

import asyncio
import math
from typing import Any

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from popradar.config import settings
from popradar.scraper import ScrapeState
from popradar.scraper.anti_detect import AntiDetect
from popradar.scraper.browser import take_debug_screenshot
from popradar.scraper.dom_fallback import extract_data_from_dom, is_challenge_page
from popradar.scraper.errors import ChallengeDetected, GlobalTimeoutExceeded, NavigationFailure
from popradar.scraper.network_intercept import OnResult, ResponseInterceptor

logger = structlog.get_logger(__name__)


def compute_page_bound(
    total_records: int,
    page_size: int,
    collected_count: int,
    max_pages: int | None = None,
) -> int:
    """
    Number of table pages to visit, capped at MAX_PAGES.

    Unknown total or page size degrades to a single page when page 1 yielded
    anything, and to zero pages otherwise.
    """
    cap = settings.MAX_PAGES if max_pages is None else max_pages
    if total_records > 0 and page_size > 0:
        expected = math.ceil(total_records / page_size)
    elif collected_count > 0:
        expected = 1
    else:
        expected = 0
    return max(0, min(expected, cap))


class PaginationController:
    """
    Drives navigation for one scrape.

    Usage:
        controller = PaginationController(page, url, state, interceptor, on_result)
        await controller.process_page(1, settings.INITIAL_RESPONSE_TIMEOUT_SECONDS)
        await controller.run(2, bound)
    """

    def __init__(
        self,
        page: Any,
        url: str,
        state: ScrapeState,
        interceptor: ResponseInterceptor,
        on_result: OnResult,
        anti_detect: AntiDetect | None = None,
    ) -> None:
        self.page = page
        self.url = url
        self.state = state
        self.interceptor = interceptor
        self.on_result = on_result
        self.anti_detect = anti_detect or AntiDetect()

    async def run(self, first_page: int, last_page: int) -> None:
        """
        Process pages first_page..last_page in order.

        Raises:
            GlobalTimeoutExceeded: the soft budget elapsed; pages already
                processed are kept.
        """
        last_page = min(last_page, settings.MAX_PAGES)
        if last_page < first_page:
            logger.info("pagination_nothing_to_fetch", last_page=last_page, source="pagination")
            return

        for page_num in range(first_page, last_page + 1):
            if self.state.timed_out:
                raise GlobalTimeoutExceeded(
                    f"stopped before page {page_num} of {last_page}"
                )
            logger.info("pagination_page_start", page_num=page_num, last_page=last_page, source="pagination")
            await self.process_page(page_num)
            if page_num < last_page:
                await self.anti_detect.inter_page_delay()

    async def process_page(self, page_num: int, response_timeout: float | None = None) -> bool:
        """
        Navigate to one page and harvest its rows.

        Returns:
            False if the page had to be skipped, True otherwise.
        """
        if response_timeout is None:
            response_timeout = settings.PENDING_RESPONSE_TIMEOUT_SECONDS

        self.state.begin_page()
        await self.interceptor.arm(self.page, page_num, self.on_result)

        try:
            await self.navigate_to_page(page_num)
        except NavigationFailure as e:
            logger.error(
                "pagination_page_skipped",
                page_num=page_num,
                reason=e.reason,
                source="pagination",
            )
            if page_num == 1:
                # The first response fixes the table dimensions even when the page is skipped.
                await self.interceptor.wait_for_result(page_num, response_timeout)
            self.state.pending_response = False
            return False

        arrived = await self.interceptor.wait_for_result(page_num, response_timeout)
        if not arrived:
            logger.warning(
                "pagination_response_timeout",
                page_num=page_num,
                timeout_seconds=response_timeout,
                source="pagination",
            )
            self.state.pending_response = False

        if self.state.intercepted_count == 0:
            logger.warning("pagination_dom_fallback", page_num=page_num, source="pagination")
            records = await extract_data_from_dom(self.page, page_num)
            self.state.append(records)
            if not records:
                logger.warning("pagination_page_empty", page_num=page_num, source="pagination")

        self.state.current_page = page_num
        self.state.pages_processed += 1
        logger.info(
            "pagination_page_done",
            page_num=page_num,
            intercepted=self.state.intercepted_count,
            collected=len(self.state.collected),
            source="pagination",
        )
        return True

    async def navigate_to_page(self, page_num: int) -> None:
        """
        Bring the table to `page_num`.

        Raises:
            NavigationFailure: the page could not be reached.
            ChallengeDetected: a challenge page persisted after waiting.
        """
        try:
            current = await self.read_current_page()
            if page_num == 1:
                await self._load_url()
            elif current == str(page_num):
                logger.info("pagination_already_on_page", page_num=page_num, source="pagination")
            else:
                await take_debug_screenshot(self.page, f"pagination-before-page{page_num}")
                if not await self._trigger_page_control(page_num, current):
                    raise NavigationFailure(page_num, "no usable pagination control")
                await self._wait_for_navigation(page_num)

            await asyncio.sleep(settings.NAVIGATION_SETTLE_SECONDS)
            await self._wait_out_challenge(page_num)
            await self._verify_page(page_num)
        except NavigationFailure:
            raise
        except Exception as e:
            await take_debug_screenshot(self.page, f"nav-general-error-page{page_num}")
            raise NavigationFailure(page_num, str(e) or type(e).__name__) from e

    async def read_current_page(self) -> str | None:
        """Current value of the page-select control, if rendered."""
        try:
            element = await self.page.query_selector(settings.PAGE_SELECT_SELECTOR)
            if element:
                return (await element.input_value() or "").strip() or None
        except Exception as e:
            logger.debug("pagination_indicator_read_failed", error=str(e), source="pagination")
        return None

    async def _load_url(self) -> None:
        try:
            await self.page.goto(
                self.url,
                wait_until="networkidle",
                timeout=settings.PAGE_NAVIGATION_TIMEOUT_SECONDS * 1000,
            )
        except PlaywrightTimeoutError:
            # The table may still have rendered; let interception and DOM decide.
            logger.warning("pagination_initial_load_timeout", url=self.url, source="pagination")

    async def _trigger_page_control(self, page_num: int, current: str | None) -> bool:
        """Click "next" when moving forward one page, else use the page select."""
        if current is not None and current.isdigit() and int(current) == page_num - 1:
            button = await self.page.query_selector(settings.NEXT_BUTTON_SELECTOR)
            if button is not None:
                classes = (await button.get_attribute("class") or "").split()
                if "disabled" not in classes:
                    await button.click()
                    return True

        select = await self.page.query_selector(settings.PAGE_SELECT_SELECTOR)
        if select is not None:
            await select.select_option(str(page_num))
            return True
        return False

    async def _wait_for_navigation(self, page_num: int) -> None:
        try:
            await self.page.wait_for_load_state(
                "networkidle",
                timeout=settings.PAGE_NAVIGATION_TIMEOUT_SECONDS * 1000,
            )
        except PlaywrightTimeoutError:
            # Table redraws are XHR driven and may never settle; verification decides.
            logger.warning("pagination_navigation_wait_timeout", page_num=page_num, source="pagination")

    async def _wait_out_challenge(self, page_num: int) -> None:
        if not await is_challenge_page(self.page):
            return

        logger.warning(
            "pagination_challenge_detected",
            page_num=page_num,
            wait_seconds=settings.CHALLENGE_WAIT_SECONDS,
            source="pagination",
        )
        await take_debug_screenshot(self.page, f"nav-challenge-page{page_num}")
        await asyncio.sleep(settings.CHALLENGE_WAIT_SECONDS)

        if await is_challenge_page(self.page):
            raise ChallengeDetected(page_num)
        logger.info("pagination_challenge_cleared", page_num=page_num, source="pagination")

    async def _verify_page(self, page_num: int) -> None:
        indicator = await self.read_current_page()
        if indicator is None:
            logger.debug("pagination_no_indicator", page_num=page_num, source="pagination")
        elif indicator != str(page_num):
            logger.error(
                "pagination_verify_failed",
                page_num=page_num,
                indicator=indicator,
                source="pagination",
            )
            await take_debug_screenshot(self.page, f"pagination-after-page{page_num}")
