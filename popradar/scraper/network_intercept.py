"""
Pop Radar - Response Interceptor (PRIMARY)

Observes the population table's own XHR traffic and harvests the JSON body
of the target endpoint. Requests are never blocked or modified.

The browser fires response events on its own schedule. Each matching
response is handed to the caller's on_result callback and then announced on
a bounded queue; the pagination controller does a timeout-bounded receive on
that queue instead of polling a flag.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any, NamedTuple

import structlog

from popradar.config import settings
from popradar.scraper.errors import InterceptionParseFailure

logger = structlog.get_logger(__name__)


class InterceptedPayload(NamedTuple):
    data: list[Any]
    records_total: int | None
    page_size: int


class InterceptResult(NamedTuple):
    parsed: InterceptedPayload | None
    expected_page: int


OnResult = Callable[[InterceptResult], None]


def parse_population_body(body: str) -> InterceptedPayload:
    """
    Parse a DataTables server-side response body.

    Raises:
        InterceptionParseFailure: body is not a JSON object with a data list.
    """
    text = (body or "").strip()
    if not text.startswith("{"):
        raise InterceptionParseFailure(f"response is not JSON: {text[:100]!r}")

    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        raise InterceptionParseFailure(f"invalid JSON: {e}") from e

    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise InterceptionParseFailure("response has no data array")

    records_total = payload.get("recordsTotal")
    if not isinstance(records_total, int) or isinstance(records_total, bool):
        records_total = None

    length = payload.get("length")
    if isinstance(length, int) and not isinstance(length, bool) and length > 0:
        page_size = length
    else:
        page_size = len(data)

    return InterceptedPayload(data=data, records_total=records_total, page_size=page_size)


class ResponseInterceptor:
    """
    Arms response observation on a Playwright page.

    Must be re-armed before every navigation: arm() removes the listeners
    installed by the previous call and drains unread queue messages.
    """

    def __init__(self, endpoint: str | None = None, queue_size: int = 8) -> None:
        self._endpoint = endpoint or settings.POPULATION_ENDPOINT
        self._queue: asyncio.Queue[int] = asyncio.Queue(maxsize=queue_size)
        self._page: Any = None
        self._listener: Callable[[Any], None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.armed_page: int = 0

    def matches(self, url: str) -> bool:
        return self._endpoint in (url or "")

    async def arm(self, page: Any, expected_page: int, on_result: OnResult) -> None:
        """
        Install request/response handlers for the page about to load.

        Args:
            page: Playwright Page object.
            expected_page: Table page number the next matching response belongs to.
            on_result: Invoked exactly once per matching response.
        """
        await self.disarm()
        self._drain()

        def _on_response(response: Any) -> None:
            if not self.matches(response.url):
                return
            task = asyncio.create_task(self._handle_response(response, expected_page, on_result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        try:
            await page.route(self.matches, self._continue_route)
            page.on("response", _on_response)
        except Exception as e:
            logger.error(
                "intercept_arm_failed",
                expected_page=expected_page,
                error=str(e),
                source="network_intercept",
            )
            return

        self._page = page
        self._listener = _on_response
        self.armed_page = expected_page
        logger.debug("intercept_armed", expected_page=expected_page, source="network_intercept")

    async def disarm(self) -> None:
        """Remove the handlers installed by the last arm(). Never raises."""
        if self._page is None:
            return
        page, listener = self._page, self._listener
        self._page = None
        self._listener = None
        try:
            if listener is not None:
                page.remove_listener("response", listener)
            await page.unroute(self.matches, self._continue_route)
        except Exception as e:
            logger.debug("intercept_disarm_failed", error=str(e), source="network_intercept")

    async def close(self) -> None:
        """Disarm and cancel response handlers still in flight. Never raises."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug("intercept_handlers_cancelled", count=len(pending), source="network_intercept")
        await self.disarm()

    async def wait_for_result(self, expected_page: int, timeout: float) -> bool:
        """
        Wait for the matching response of `expected_page`.

        Returns:
            True if it arrived within `timeout`, False otherwise. A timeout
            is not an error: the caller falls back to the DOM.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            try:
                page_num = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return False
            if page_num == expected_page:
                return True
            logger.debug(
                "intercept_stale_message",
                expected_page=expected_page,
                received_page=page_num,
                source="network_intercept",
            )

    async def _continue_route(self, route: Any) -> None:
        """Let every intercepted request through unmodified."""
        try:
            await route.continue_()
        except Exception as e:
            logger.warning(
                "intercept_continue_failed",
                url=getattr(route.request, "url", ""),
                error=str(e),
                source="network_intercept",
            )

    async def _handle_response(
        self,
        response: Any,
        expected_page: int,
        on_result: OnResult,
    ) -> None:
        parsed: InterceptedPayload | None = None
        try:
            if response.ok:
                parsed = parse_population_body(await response.text())
                logger.info(
                    "intercept_response_parsed",
                    expected_page=expected_page,
                    records_total=parsed.records_total,
                    items=len(parsed.data),
                    source="network_intercept",
                )
            else:
                logger.error(
                    "intercept_non_ok_status",
                    expected_page=expected_page,
                    status=response.status,
                    url=response.url,
                    source="network_intercept",
                )
        except InterceptionParseFailure as e:
            logger.warning(
                "intercept_parse_failed",
                expected_page=expected_page,
                error=str(e),
                source="network_intercept",
            )
        except Exception as e:
            logger.error(
                "intercept_response_failed",
                expected_page=expected_page,
                error=str(e),
                source="network_intercept",
            )
        finally:
            try:
                on_result(InterceptResult(parsed=parsed, expected_page=expected_page))
            except Exception as e:
                logger.error(
                    "intercept_callback_failed",
                    expected_page=expected_page,
                    error=str(e),
                    source="network_intercept",
                )
            self._post(expected_page)

    def _post(self, page_num: int) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(page_num)

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
