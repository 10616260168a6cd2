"""
Pop Radar - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- Fast timeout budget (autouse)
- In-memory Playwright page that serves a scripted DataTables population table
- Fake browser manager for orchestrator tests
- Mock database session (aiosqlite in-memory)
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncGenerator
from unittest.mock import patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from popradar.config import settings
from popradar.models.base import Base
from popradar.scraper.errors import LaunchFailure


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

ENDPOINT_URL = "https://www.psacard.com/Pop/GetSetItems"

FAST_SETTINGS: dict[str, Any] = {
    "GLOBAL_TIMEOUT_SECONDS": 10.0,
    "GLOBAL_TIMEOUT_GRACE_SECONDS": 5.0,
    "PENDING_RESPONSE_TIMEOUT_SECONDS": 0.2,
    "INITIAL_RESPONSE_TIMEOUT_SECONDS": 0.2,
    "DOM_ROW_WAIT_TIMEOUT_SECONDS": 0.1,
    "CHALLENGE_WAIT_SECONDS": 0.01,
    "NAVIGATION_SETTLE_SECONDS": 0.0,
    "INTER_PAGE_DELAY_SECONDS": 0.0,
    "INTER_PAGE_JITTER_SECONDS": 0.0,
    "BROWSER_CLOSE_TIMEOUT_SECONDS": 0.5,
    "DEBUG_SCREENSHOTS": False,
}


@pytest.fixture(autouse=True)
def fast_settings() -> Any:
    """Shrink every wait so no test sleeps for real-world durations."""
    with patch.multiple(settings, **FAST_SETTINGS):
        yield settings


# ---------------------------------------------------------------------------
# Fake Playwright objects
# ---------------------------------------------------------------------------


@dataclass
class FakeTable:
    """What one table page serves: an XHR body, rendered rows, or a challenge."""

    api_body: dict[str, Any] | None = None
    raw_body: str | None = None
    status: int = 200
    rows: list[list[str]] = field(default_factory=list)
    info: str = ""
    length: str = ""
    challenge: bool = False


class FakeResponse:
    def __init__(self, url: str, body: str, status: int = 200) -> None:
        self.url = url
        self.status = status
        self._body = body

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def text(self) -> str:
        return self._body


class FakeElement:
    def __init__(
        self,
        text: str = "",
        value: str = "",
        classes: str = "",
        on_click: Callable[[], Awaitable[None]] | None = None,
        on_select: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._text = text
        self._value = value
        self._classes = classes
        self._on_click = on_click
        self._on_select = on_select

    async def text_content(self) -> str:
        return self._text

    async def input_value(self) -> str:
        return self._value

    async def get_attribute(self, name: str) -> str | None:
        return self._classes if name == "class" else None

    async def click(self) -> None:
        if self._on_click is not None:
            await self._on_click()

    async def select_option(self, value: str) -> list[str]:
        if self._on_select is not None:
            await self._on_select(value)
        return [value]


class FakePage:
    """
    Scripted stand-in for a Playwright Page showing a paginated population table.

    Navigating to a table page fires a response event for the population
    endpoint when that page has an API body (and is not a challenge), and
    exposes its rows, info text, and page controls to query_selector.
    """

    def __init__(
        self,
        tables: dict[int, FakeTable],
        paginated: bool = True,
        title: str = "PSA Population Report",
    ) -> None:
        self.tables = tables
        self.paginated = paginated
        self._title = title
        self.current = 0
        self.visited: list[int] = []
        self.listeners: dict[str, list[Callable[[Any], None]]] = {}
        self.routes: list[tuple[Any, Any]] = []
        self.goto_urls: list[str] = []
        self.clicks = 0
        self.selections: list[str] = []
        self.screenshots: list[str] = []
        self.default_timeout: float | None = None
        self.default_navigation_timeout: float | None = None

    @property
    def table(self) -> FakeTable:
        return self.tables.get(self.current, FakeTable())

    # Events and routing

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        self.listeners.get(event, []).remove(handler)

    async def route(self, matcher: Any, handler: Any) -> None:
        self.routes.append((matcher, handler))

    async def unroute(self, matcher: Any, handler: Any = None) -> None:
        self.routes.remove((matcher, handler))

    def emit_response(self, response: FakeResponse) -> None:
        for handler in list(self.listeners.get("response", [])):
            handler(response)

    async def show(self, page_num: int) -> None:
        self.current = page_num
        self.visited.append(page_num)
        table = self.table
        if table.challenge:
            return
        if table.raw_body is not None:
            self.emit_response(FakeResponse(ENDPOINT_URL, table.raw_body, table.status))
        elif table.api_body is not None:
            self.emit_response(FakeResponse(ENDPOINT_URL, json.dumps(table.api_body), table.status))

    # Navigation

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.goto_urls.append(url)
        await self.show(1)

    async def wait_for_load_state(self, state: str = "load", timeout: float | None = None) -> None:
        return None

    async def title(self) -> str:
        return "Just a moment..." if self.table.challenge else self._title

    # DOM

    async def query_selector(self, selector: str) -> FakeElement | None:
        table = self.table
        if selector == settings.CHALLENGE_SELECTOR:
            return FakeElement() if table.challenge else None
        if self.current == 0:
            return None
        if selector == settings.PAGE_SELECT_SELECTOR and self.paginated:
            return FakeElement(value=str(self.current), on_select=self._select)
        if selector == settings.NEXT_BUTTON_SELECTOR and self.paginated:
            classes = "paginate_button next"
            if self.current >= max(self.tables, default=1):
                classes += " disabled"
            return FakeElement(classes=classes, on_click=self._click_next)
        if selector == settings.INFO_SELECTOR and table.info:
            return FakeElement(text=table.info)
        if selector == settings.PAGE_LENGTH_SELECTOR and table.length:
            return FakeElement(value=table.length)
        return None

    async def wait_for_selector(self, selector: str, timeout: float | None = None) -> FakeElement:
        if self.table.rows and not self.table.challenge:
            return FakeElement()
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def evaluate(self, script: str, arg: Any = None) -> list[list[str]]:
        return [list(row) for row in self.table.rows]

    async def screenshot(self, path: str | None = None, full_page: bool = False) -> bytes:
        self.screenshots.append(path or "")
        return b""

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_navigation_timeout = timeout

    async def _click_next(self) -> None:
        self.clicks += 1
        await self.show(self.current + 1)

    async def _select(self, value: str) -> None:
        self.selections.append(value)
        await self.show(int(value))


class FakeBrowserManager:
    """Stands in for BrowserManager: hands out one FakePage, counts open/close."""

    def __init__(self, page: FakePage | None, fail_launch: bool = False) -> None:
        self.page = page
        self.fail_launch = fail_launch
        self.open_calls = 0
        self.close_calls = 0

    async def open(self) -> None:
        self.open_calls += 1
        if self.fail_launch:
            raise LaunchFailure("browser launch failed: chromium not installed")

    async def new_page(self) -> FakePage | None:
        return self.page

    async def close(self) -> None:
        self.close_calls += 1


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_api_body(
    start: int,
    count: int,
    records_total: int,
    length: int | None = None,
) -> dict[str, Any]:
    """DataTables server-side body with `count` items numbered from `start`."""
    data = [
        {
            "SpecID": 1000 + i,
            "SubjectName": f"Card {i}",
            "Variety": "",
            "CardNumber": str(i),
            "Total": f"{i * 10:,}",
        }
        for i in range(start, start + count)
    ]
    body: dict[str, Any] = {"data": data, "recordsTotal": records_total, "recordsFiltered": records_total}
    if length is not None:
        body["length"] = length
    return body


def build_dom_rows(start: int, count: int, with_footer: bool = True) -> list[list[str]]:
    """Rendered table rows numbered from `start`, plus the summary footer row."""
    rows = [
        [f"Card {i} Holo", str(i), "0", "0", str(i * 10)]
        for i in range(start, start + count)
    ]
    if with_footer:
        rows.append(["TOTAL POPULATION", "", "0", "0", "99,999"])
    return rows


@pytest.fixture
def fake_table() -> type[FakeTable]:
    return FakeTable


@pytest.fixture
def fake_page() -> Callable[..., FakePage]:
    """Factory: fake_page({1: FakeTable(...), 2: ...}, paginated=True)."""
    return FakePage


@pytest.fixture
def fake_response() -> type[FakeResponse]:
    return FakeResponse


@pytest.fixture
def fake_browser() -> Callable[..., FakeBrowserManager]:
    return FakeBrowserManager


@pytest.fixture
def api_body() -> Callable[..., dict[str, Any]]:
    return build_api_body


@pytest.fixture
def dom_rows() -> Callable[..., list[list[str]]]:
    return build_dom_rows


@pytest.fixture
def endpoint_url() -> str:
    return ENDPOINT_URL


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Async session factory over a fresh aiosqlite in-memory database.

    StaticPool keeps the single in-memory connection shared between sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def mock_db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Single session on the in-memory database."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fixture Loaders
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def load_mock_population() -> dict:
    """Load a captured population endpoint body from fixtures/mock_population_response.json."""
    fixture_path = Path(__file__).parent / "fixtures" / "mock_population_response.json"
    with open(fixture_path) as f:
        return json.load(f)
