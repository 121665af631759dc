"""Test utilities for driver and orchestration tests.

Fakes for the Playwright objects and the DNS resolver the drivers touch,
plus helpers to capture status events. The fakes implement only the calls
the drivers make.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import dns.resolver
import httpx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from trawl.common.status import StatusEvent, StatusKind, StatusReporter
from trawl.data_types import SessionConfig

logger = logging.getLogger(__name__)


def collect_events(
    reporter: StatusReporter,
) -> list[StatusEvent]:
    """Attach a listener that records every event published on ``reporter``.

    Returns:
        The list the events are appended to.

    Example:
        events = collect_events(reporter)
        reporter.status("hello")
        assert events[0].message == "hello"
    """
    events: list[StatusEvent] = []
    reporter.add_listener(events.append)
    return events


def status_lines(events: list[StatusEvent]) -> list[str]:
    return [e.message for e in events if e.kind is StatusKind.STATUS]


def mock_client(handler: Any) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Playwright fakes
# =============================================================================


class FakeElement:
    """A DOM element handle."""

    def __init__(
        self,
        text: str = "",
        attributes: dict[str, str] | None = None,
        children: dict[str, FakeElement] | None = None,
        on_click: Any = None,
    ) -> None:
        self.text = text
        self.attributes = attributes or {}
        self.children = children or {}
        self.on_click = on_click
        self.clicks = 0

    async def inner_text(self) -> str:
        return self.text

    async def text_content(self) -> str:
        return self.text

    async def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    async def query_selector(self, selector: str) -> FakeElement | None:
        return self.children.get(selector)

    async def click(self) -> None:
        self.clicks += 1
        if self.on_click is not None:
            self.on_click()


class FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status


class FakePage:
    """A page whose DOM is a selector -> elements mapping.

    Args:
        selectors: Elements returned for each selector.
        html: What content() returns.
        title: What title() returns.
        status: HTTP status of the main document.
        goto_error: Raised by goto() when set.
    """

    def __init__(
        self,
        selectors: dict[str, list[FakeElement]] | None = None,
        html: str = "<html><body></body></html>",
        title: str = "",
        status: int = 200,
        goto_error: Exception | None = None,
    ) -> None:
        self.selectors = selectors or {}
        self.html = html
        self._title = title
        self.status = status
        self.goto_error = goto_error
        self.visited: list[str] = []
        self.screenshots: list[str] = []
        self.viewports: list[dict[str, int]] = []
        self.evaluations: list[Any] = []
        self.evaluate_result: Any = ""
        self.closed = False

    async def goto(self, url: str, **kwargs: Any) -> FakeResponse:
        if self.goto_error is not None:
            raise self.goto_error
        self.visited.append(url)
        return FakeResponse(self.status)

    async def wait_for_selector(
        self, selector: str, timeout: float = 0, state: str = "visible"
    ) -> FakeElement:
        elements = self.selectors.get(selector)
        if not elements:
            raise PlaywrightTimeoutError(
                f"Timeout {timeout}ms exceeded waiting for {selector}"
            )
        return elements[0]

    async def query_selector(self, selector: str) -> FakeElement | None:
        elements = self.selectors.get(selector)
        return elements[0] if elements else None

    async def query_selector_all(self, selector: str) -> list[FakeElement]:
        return list(self.selectors.get(selector, []))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluations.append(arg)
        if callable(self.evaluate_result):
            return self.evaluate_result(arg)
        return self.evaluate_result

    async def content(self) -> str:
        return self.html

    async def title(self) -> str:
        return self._title

    async def set_viewport_size(self, size: dict[str, int]) -> None:
        self.viewports.append(size)

    async def screenshot(self, path: str, full_page: bool = False) -> None:
        Path(path).write_bytes(b"\x89PNG fake")
        self.screenshots.append(path)

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    """A browser context handing out pages from a factory."""

    def __init__(
        self, page_factory: Any, options: dict[str, Any] | None = None
    ) -> None:
        self.page_factory = page_factory
        self.options = options or {}
        self.pages: list[FakePage] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = self.page_factory()
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(
        self, page_factory: Any, context_error: Exception | None = None
    ) -> None:
        self.page_factory = page_factory
        self.context_error = context_error
        self.contexts: list[FakeContext] = []

    async def new_context(self, **options: Any) -> FakeContext:
        if self.context_error is not None:
            raise self.context_error
        context = FakeContext(self.page_factory, options)
        self.contexts.append(context)
        return context


class FakeSession:
    def __init__(
        self,
        config: SessionConfig,
        page_factory: Any,
        context_error: Exception | None = None,
    ) -> None:
        self.config = config
        self.browser = FakeBrowser(page_factory, context_error)
        self.context = FakeContext(page_factory)
        self.closed = False

    async def new_page(self) -> FakePage:
        return await self.context.new_page()


class FakeBrowserManager:
    """Stands in for BrowserSessionManager.

    Args:
        page_factory: Called for every new page. A single FakePage may be
            returned repeatedly.
        launch_error: Raised instead of opening a session when set.
        context_error: Raised by the session browser's new_context() when
            set.
    """

    def __init__(
        self,
        page_factory: Any,
        launch_error: Exception | None = None,
        context_error: Exception | None = None,
    ) -> None:
        self.page_factory = page_factory
        self.launch_error = launch_error
        self.context_error = context_error
        self.sessions: list[FakeSession] = []

    @property
    def open_sessions(self) -> int:
        return sum(1 for s in self.sessions if not s.closed)

    @asynccontextmanager
    async def session(
        self, config: SessionConfig
    ) -> AsyncIterator[FakeSession]:
        if self.launch_error is not None:
            raise self.launch_error
        session = FakeSession(config, self.page_factory, self.context_error)
        self.sessions.append(session)
        try:
            yield session
        finally:
            session.closed = True


# =============================================================================
# DNS fakes
# =============================================================================


class FakeRdata:
    def __init__(self, text: str) -> None:
        self.text = text

    def to_text(self) -> str:
        return self.text


class FakeResolver:
    """Stands in for dns.asyncresolver.Resolver.

    Answers come from a (name, type) -> values table; anything else raises
    NoAnswer.

    Args:
        answers: The lookup table.
        delays: Per-name delays, so domains finish out of order.
        on_resolve: Called with (name, type) before answering.
        gate: When set, every lookup waits for this event first.
    """

    def __init__(
        self,
        answers: dict[tuple[str, str], list[str]],
        delays: dict[str, float] | None = None,
        on_resolve: Any = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.answers = answers
        self.delays = delays or {}
        self.on_resolve = on_resolve
        self.gate = gate
        self.queries: list[tuple[str, str]] = []

    async def resolve(
        self, name: str, record_type: str, lifetime: float = 0
    ) -> list[FakeRdata]:
        self.queries.append((name, record_type))
        if self.on_resolve is not None:
            self.on_resolve(name, record_type)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delays.get(name, 0))
        if (name, record_type) not in self.answers:
            raise dns.resolver.NoAnswer()
        return [FakeRdata(v) for v in self.answers[(name, record_type)]]
