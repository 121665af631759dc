"""Browser session lifecycle.

A Session bundles the Playwright driver, one Chromium browser and one
browser context. Sessions are scoped to a single batch step (one query for
Maps and FAQ, one batch for Backup) and must be released on every exit
path. The ``session()`` context manager is the way to guarantee that.

Example::

    manager = BrowserSessionManager()
    async with manager.session(SessionConfig(headless=True)) as session:
        page = await session.new_page()
        await page.goto("https://example.com")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from trawl.common.exceptions import BrowserLaunchError
from trawl.data_types import SessionConfig

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

_ANTI_DETECTION_FLAGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-infobars",
    "--window-position=0,0",
    "--ignore-certificate-errors",
    "--ignore-certificate-errors-spki-list",
    "--disable-features=IsolateOrigins,site-per-process",
    "--start-maximized",
]


def build_launch_args(config: SessionConfig) -> list[str]:
    """Chromium command-line flags for a session.

    The proxy flag, when a proxy is configured, comes first.

    Args:
        config: The session configuration.

    Returns:
        The flag list passed to the browser launcher.
    """
    args = [f"--user-agent={USER_AGENT}", *_ANTI_DETECTION_FLAGS]
    if config.proxy:
        args.insert(0, f"--proxy-server={config.proxy}")
    return args


@dataclass
class Session:
    """A live browser with one context.

    Attributes:
        playwright: The running Playwright driver.
        browser: The launched browser.
        context: The context every page of this session is opened in.
        config: The configuration the session was launched with.
        closed: Set once close() released the session.
    """

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    config: SessionConfig
    closed: bool = False

    async def new_page(self) -> Page:
        return await self.context.new_page()


class BrowserSessionManager:
    """Opens and closes browser Sessions.

    Args:
        playwright_factory: Returns the Playwright context manager. Defaults
            to ``async_playwright``.
        context_options: Extra keyword arguments for ``new_context``.
    """

    def __init__(
        self,
        playwright_factory: Callable[[], Any] = async_playwright,
        context_options: dict[str, Any] | None = None,
    ) -> None:
        self._playwright_factory = playwright_factory
        self._context_options = context_options or {}

    async def open(self, config: SessionConfig) -> Session:
        """Launch a browser and create its context.

        Args:
            config: Headless and proxy settings.

        Returns:
            A live Session. The caller owns it and must close() it.

        Raises:
            BrowserLaunchError: If Playwright, the browser or the context
                cannot be started. Anything already started is released.
        """
        args = build_launch_args(config)
        logger.debug(
            f"Launching chromium (headless={config.headless}, "
            f"proxy={config.proxy or 'none'})"
        )
        try:
            playwright = await self._playwright_factory().start()
        except PlaywrightError as e:
            raise BrowserLaunchError(
                f"Could not start Playwright: {e.message}"
            ) from e

        try:
            browser = await playwright.chromium.launch(
                headless=config.headless, args=args
            )
        except PlaywrightError as e:
            await playwright.stop()
            raise BrowserLaunchError(
                f"Could not launch browser: {e.message}",
                context={"args": " ".join(args)},
            ) from e

        try:
            context = await browser.new_context(
                user_agent=USER_AGENT, **self._context_options
            )
        except PlaywrightError as e:
            await browser.close()
            await playwright.stop()
            raise BrowserLaunchError(
                f"Could not create browser context: {e.message}"
            ) from e

        return Session(
            playwright=playwright,
            browser=browser,
            context=context,
            config=config,
        )

    async def close(self, session: Session) -> None:
        """Release a Session. Safe to call more than once.

        Every layer is released even if an inner one fails to close.
        """
        if session.closed:
            return
        session.closed = True
        try:
            try:
                await session.context.close()
            finally:
                await session.browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error while closing browser: {e.message}")
        finally:
            await session.playwright.stop()
        logger.debug("Browser session closed")

    @asynccontextmanager
    async def session(self, config: SessionConfig) -> AsyncIterator[Session]:
        """Open a Session for the duration of a block.

        The session is closed when the block exits for any reason,
        including cancellation and exceptions.
        """
        session = await self.open(config)
        try:
            yield session
        finally:
            await self.close(session)
