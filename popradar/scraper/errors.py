"""
Pop Radar - Scraper Error Taxonomy

Only LaunchFailure and unexpected exceptions ever reach the orchestrator,
which converts them into a partial result. Everything else is recovered at
the component that detects it.
"""

from __future__ import annotations


class PopulationScrapeError(Exception):
    """Base class for population scraper errors."""


class LaunchFailure(PopulationScrapeError):
    """The browser could not be launched. Fatal for the whole scrape."""


class NavigationFailure(PopulationScrapeError):
    """A page could not be reached or verified. The page is skipped."""

    def __init__(self, page_num: int, reason: str):
        super().__init__(f"page {page_num}: {reason}")
        self.page_num = page_num
        self.reason = reason


class ChallengeDetected(NavigationFailure):
    """An anti-bot interstitial persisted after the extended wait."""

    def __init__(self, page_num: int):
        super().__init__(page_num, "challenge page persisted")


class InterceptionParseFailure(PopulationScrapeError):
    """A matching response could not be parsed. Triggers the DOM fallback."""


class GlobalTimeoutExceeded(PopulationScrapeError):
    """The soft global budget elapsed. Remaining pagination is truncated."""
