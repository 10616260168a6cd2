"""
Pop Radar - DOM Fallback Extractor

Reads the record count, page size, and table rows straight from the rendered
DataTables markup when network interception produced nothing for a page.
An empty table is a normal outcome here, not an error.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from popradar.config import settings
from popradar.scraper import DomItem, PopulationRecord
from popradar.scraper.browser import take_debug_screenshot
from popradar.scraper.normalizer import format_response_data, parse_population
from popradar.scraper.variant import extract_variant

logger = structlog.get_logger(__name__)

# "Showing 1 to 300 of 1,234 entries"
TOTAL_RECORDS_PATTERN = re.compile(r"(?:of|to)\s+(\d[\d,]*)\s+(?:entries|total)", re.IGNORECASE)

# Runs in the page: returns the trimmed cell texts of every body row.
ROWS_SCRIPT = """
(selector) => {
    const table = document.querySelector(selector);
    if (!table) {
        return [];
    }
    return Array.from(table.querySelectorAll("tbody tr")).map((row) =>
        Array.from(row.querySelectorAll("td")).map((cell) => (cell.textContent || "").trim())
    );
}
"""


async def _extract_text(page: Any, selector: str) -> str | None:
    """Safely extract text from a CSS selector."""
    try:
        element = await page.query_selector(selector)
        if element:
            return (await element.text_content() or "").strip()
    except Exception as e:
        logger.debug("dom_text_read_failed", selector=selector, error=str(e), source="dom_fallback")
    return None


async def _extract_value(page: Any, selector: str) -> str | None:
    """Safely read the current value of a form control."""
    try:
        element = await page.query_selector(selector)
        if element:
            return (await element.input_value() or "").strip()
    except Exception as e:
        logger.debug("dom_value_read_failed", selector=selector, error=str(e), source="dom_fallback")
    return None


async def is_challenge_page(page: Any) -> bool:
    """True when the page is an anti-bot interstitial instead of real content."""
    try:
        title = await page.title()
        if settings.CHALLENGE_TITLE_MARKER in (title or ""):
            return True
        return await page.query_selector(settings.CHALLENGE_SELECTOR) is not None
    except Exception as e:
        logger.warning("challenge_check_failed", error=str(e), source="dom_fallback")
        return False


async def extract_total_records_from_dom(page: Any) -> int:
    """Parse the results-summary text. Returns 0 when unknown."""
    text = await _extract_text(page, settings.INFO_SELECTOR)
    if not text:
        return 0
    match = TOTAL_RECORDS_PATTERN.search(text)
    if match:
        return int(match.group(1).replace(",", ""))
    return 0


async def extract_page_size_from_dom(page: Any) -> int:
    """Read the page-size select control. Returns 0 when unknown."""
    value = await _extract_value(page, settings.PAGE_LENGTH_SELECTOR)
    if value and value.isdigit():
        return int(value)
    return 0


def parse_table_rows(rows: Any) -> list[DomItem]:
    """
    Turn raw cell texts into DomItem rows.

    Skips footer/total rows and rows with fewer than 3 cells. The description
    and variant come from cell 1, the certification number from cell 2, the
    population from the last cell.
    """
    items: list[DomItem] = []
    if not isinstance(rows, list):
        return items

    for index, cells in enumerate(rows):
        if not isinstance(cells, list):
            continue
        cells = [str(cell or "").strip() for cell in cells]

        if settings.TOTAL_ROW_MARKER in " ".join(cells).upper():
            continue
        if len(cells) < 3:
            logger.debug("dom_row_too_short", index=index, cells=len(cells), source="dom_fallback")
            continue

        description, variant = extract_variant(cells[0])
        certification_number = cells[1]
        if not description or not certification_number:
            continue

        items.append(
            DomItem(
                subject_name=description,
                variety=variant or None,
                card_number=certification_number,
                total=parse_population(cells[-1]),
            )
        )

    return items


async def extract_data_from_dom(page: Any, page_num: int) -> list[PopulationRecord]:
    """
    Extract population records from the rendered table.

    Args:
        page: Playwright Page object.
        page_num: Page number, used for logging and screenshot names.

    Returns:
        Normalized records, empty when the table never renders or a
        challenge page is showing.
    """
    row_selector = f"{settings.TABLE_SELECTOR} tbody tr"
    try:
        await page.wait_for_selector(
            row_selector,
            timeout=settings.DOM_ROW_WAIT_TIMEOUT_SECONDS * 1000,
        )
    except PlaywrightTimeoutError:
        logger.warning("dom_rows_wait_timeout", page_num=page_num, source="dom_fallback")
        await take_debug_screenshot(page, f"dom-extract-table-wait-timeout-page{page_num}")
        return []
    except Exception as e:
        logger.error("dom_rows_wait_failed", page_num=page_num, error=str(e), source="dom_fallback")
        return []

    if await is_challenge_page(page):
        logger.warning("dom_challenge_detected", page_num=page_num, source="dom_fallback")
        await take_debug_screenshot(page, f"dom-extract-challenge-page{page_num}")
        return []

    try:
        rows = await page.evaluate(ROWS_SCRIPT, settings.TABLE_SELECTOR)
    except Exception as e:
        logger.error("dom_extraction_failed", page_num=page_num, error=str(e), source="dom_fallback")
        await take_debug_screenshot(page, f"dom-extract-general-error-page{page_num}")
        return []

    records = format_response_data(parse_table_rows(rows))
    logger.info(
        "dom_extraction_complete",
        page_num=page_num,
        rows=len(rows) if isinstance(rows, list) else 0,
        records=len(records),
        source="dom_fallback",
    )
    return records
