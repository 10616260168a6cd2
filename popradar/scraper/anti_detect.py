"""
Pop Radar - Anti-Detection Layer

Launch arguments, browser fingerprint, request headers, proxy configuration
and the jittered politeness delay applied between table pages.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import structlog

from popradar.config import settings

logger = structlog.get_logger(__name__)


class AntiDetect:
    """
    Anti-detection settings for Playwright scraping.

    Manages:
    - Chromium launch arguments
    - User-agent rotation
    - Locale headers and the navigator.webdriver mask
    - Proxy configuration
    - Delays between page navigations
    """

    # Realistic user agents for rotation
    USER_AGENTS = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    ]

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--disable-gpu",
        "--disable-blink-features=AutomationControlled",
        "--window-size=1920,1080",
    ]

    VIEWPORT = {"width": 1920, "height": 1080}
    LOCALE = "en-US"

    EXTRA_HEADERS = {
        "Accept-Language": "en-US,en;q=0.9",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
    window.chrome = window.chrome || { runtime: {} };
    """

    def __init__(self) -> None:
        self._delay: float = settings.INTER_PAGE_DELAY_SECONDS
        self._jitter: float = settings.INTER_PAGE_JITTER_SECONDS

    def get_random_user_agent(self) -> str:
        """Return a random user agent string."""
        return random.choice(self.USER_AGENTS)

    def get_proxy_config(self) -> dict[str, str] | None:
        """Return proxy configuration if PROXY_URL is set."""
        if settings.PROXY_URL:
            return {"server": settings.PROXY_URL}
        return None

    def context_options(self) -> dict[str, Any]:
        """Keyword arguments for browser.new_context()."""
        return {
            "viewport": dict(self.VIEWPORT),
            "user_agent": self.get_random_user_agent(),
            "locale": self.LOCALE,
            "extra_http_headers": dict(self.EXTRA_HEADERS),
        }

    async def configure_context(self, context: Any) -> None:
        """
        Apply the fingerprint mask to a Playwright BrowserContext.

        Args:
            context: Playwright BrowserContext to configure.
        """
        await context.add_init_script(self.STEALTH_SCRIPT)

    async def inter_page_delay(self) -> None:
        """Sleep for the politeness delay plus random jitter."""
        delay = self._delay + random.uniform(0, self._jitter)
        logger.debug("anti_detect_delay", delay_seconds=round(delay, 2), source="anti_detect")
        await asyncio.sleep(delay)
