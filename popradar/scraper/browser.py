"""
Pop Radar - Browser/Page Lifecycle Manager

The only component that spawns OS-level browser processes. Opened exactly
once and closed exactly once per scrape, including on every error path.

Usage:
    async with BrowserManager() as manager:
        page = await manager.new_page()
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog
from playwright.async_api import async_playwright

from popradar.config import settings
from popradar.scraper.anti_detect import AntiDetect
from popradar.scraper.errors import LaunchFailure

logger = structlog.get_logger(__name__)


class BrowserManager:
    """
    Owns the Playwright driver, browser, and context handles.

    Handles never outlive the scrape that created them: close() always runs
    and never raises.
    """

    def __init__(
        self,
        anti_detect: AntiDetect | None = None,
        headless: bool | None = None,
    ) -> None:
        self.anti_detect = anti_detect or AntiDetect()
        self._headless = settings.HEADLESS if headless is None else headless
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._closed = False

    async def __aenter__(self) -> BrowserManager:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._browser is not None and not self._closed

    async def open(self) -> Any:
        """
        Launch a headless Chromium with anti-detection settings.

        Returns:
            The Playwright Browser.

        Raises:
            LaunchFailure: if the driver or browser cannot start in time.
        """
        if self._browser is not None:
            return self._browser

        logger.info("browser_launching", headless=self._headless, source="browser")
        try:
            self._playwright = await asyncio.wait_for(
                async_playwright().start(),
                timeout=settings.BROWSER_LAUNCH_TIMEOUT_SECONDS,
            )
            launch_kwargs: dict[str, Any] = {
                "headless": self._headless,
                "args": list(self.anti_detect.LAUNCH_ARGS),
                "timeout": settings.BROWSER_LAUNCH_TIMEOUT_SECONDS * 1000,
            }
            proxy = self.anti_detect.get_proxy_config()
            if proxy:
                launch_kwargs["proxy"] = proxy

            self._browser = await asyncio.wait_for(
                self._playwright.chromium.launch(**launch_kwargs),
                timeout=settings.BROWSER_LAUNCH_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.error(
                "browser_launch_failed",
                error=str(e),
                error_type=type(e).__name__,
                source="browser",
            )
            await self.close()
            raise LaunchFailure(f"browser launch failed: {e}") from e

        logger.info("browser_launched", source="browser")
        return self._browser

    async def new_page(self) -> Any:
        """
        Create a configured page in a fresh context.

        Operation timeouts (clicks, selectors) are kept separate from the
        navigation timeout.
        """
        if self._browser is None:
            raise LaunchFailure("new_page() called before open()")

        self._context = await self._browser.new_context(**self.anti_detect.context_options())
        await self.anti_detect.configure_context(self._context)

        page = await self._context.new_page()
        page.set_default_timeout(settings.PAGE_DEFAULT_TIMEOUT_SECONDS * 1000)
        page.set_default_navigation_timeout(settings.PAGE_NAVIGATION_TIMEOUT_SECONDS * 1000)
        return page

    async def close(self) -> None:
        """Close the browser and driver. Logs and swallows every error."""
        if self._closed:
            return
        self._closed = True

        if self._browser is not None:
            try:
                await asyncio.wait_for(
                    self._browser.close(),
                    timeout=settings.BROWSER_CLOSE_TIMEOUT_SECONDS,
                )
                logger.info("browser_closed", source="browser")
            except Exception as e:
                logger.error(
                    "browser_close_failed",
                    error=str(e) or type(e).__name__,
                    source="browser",
                )

        if self._playwright is not None:
            try:
                await asyncio.wait_for(
                    self._playwright.stop(),
                    timeout=settings.BROWSER_CLOSE_TIMEOUT_SECONDS,
                )
            except Exception as e:
                logger.error(
                    "playwright_stop_failed",
                    error=str(e) or type(e).__name__,
                    source="browser",
                )

        self._browser = None
        self._context = None
        self._playwright = None


async def take_debug_screenshot(page: Any, name: str) -> Path | None:
    """
    Save a full-page screenshot to DEBUG_DIR when debug capture is enabled.

    Diagnostic side channel only: failures are logged, never raised.
    """
    if not settings.DEBUG_SCREENSHOTS:
        return None

    path = Path(settings.DEBUG_DIR) / f"{name}.png"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path), full_page=True)
    except Exception as e:
        logger.warning(
            "debug_screenshot_failed",
            name=name,
            error=str(e),
            source="browser",
        )
        return None

    logger.debug("debug_screenshot_saved", path=str(path), source="browser")
    return path
