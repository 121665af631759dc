"""CAPTCHA suspend/resume checkpoint.

When a page shows an anti-bot challenge, the batch does not fail and does
not navigate away. The checkpoint asks the user (through the status channel)
to solve the challenge in the visible browser, keeps the page as a suspended
CaptchaState, and waits for an external confirmation. Extraction then
resumes on the same page object, with its cookies and navigation state.

A stop request releases a suspended checkpoint immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from trawl.common.cancellation import CancellationToken
from trawl.common.status import StatusReporter
from trawl.data_types import CaptchaState

logger = logging.getLogger(__name__)

CAPTCHA_SELECTOR = (
    '#captcha, iframe[src*="captcha"], div.g-recaptcha, '
    'iframe[src*="recaptcha"]'
)
CAPTCHA_TIMEOUT_MS = 3000

USER_ACTION_MESSAGE = (
    "[!] CAPTCHA detected! Solve it in the browser window, "
    "then confirm to continue."
)


class CaptchaCheckpoint:
    """Detects challenges and suspends until the user confirms.

    One checkpoint belongs to one batch; it holds at most one pending
    CaptchaState at a time.

    Args:
        reporter: Receives the user_action_required events.
        timeout_ms: How long check() waits for a challenge to appear.
    """

    def __init__(
        self,
        reporter: StatusReporter,
        timeout_ms: int = CAPTCHA_TIMEOUT_MS,
    ) -> None:
        self.reporter = reporter
        self.timeout_ms = timeout_ms
        self._pending: CaptchaState | None = None
        self._confirmed = asyncio.Event()

    @property
    def pending(self) -> CaptchaState | None:
        return self._pending

    async def check(self, page: Any) -> CaptchaState:
        """Look for a challenge on ``page``.

        On detection the page is kept open, the state is stored as pending
        and the user is asked to act.

        Returns:
            The checkpoint state; ``detected`` tells whether to suspend.
        """
        try:
            await page.wait_for_selector(
                CAPTCHA_SELECTOR, timeout=self.timeout_ms, state="attached"
            )
        except PlaywrightTimeoutError:
            return CaptchaState(detected=False, page=page)

        state = CaptchaState(detected=True, page=page)
        self._pending = state
        self._confirmed.clear()
        self.reporter.user_action_required(USER_ACTION_MESSAGE)
        return state

    def confirm_resolved(self) -> None:
        """External resume signal from the user."""
        if self._pending is None:
            logger.info("CAPTCHA confirmation received with nothing pending")
            return
        logger.info("CAPTCHA confirmed by user")
        self._confirmed.set()

    async def wait_for_resume(
        self, state: CaptchaState, token: CancellationToken
    ) -> bool:
        """Suspend until the user confirms or a stop is requested.

        Args:
            state: The pending state returned by check().
            token: Cancels the wait.

        Returns:
            True when the user confirmed, False when cancelled.
        """
        if not state.detected:
            return True

        confirmed = asyncio.ensure_future(self._confirmed.wait())
        stopped = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {confirmed, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in (confirmed, stopped):
                if not waiter.done():
                    waiter.cancel()

        resumed = self._confirmed.is_set() and not token.is_stop_requested()
        self._pending = None
        self._confirmed.clear()
        if not resumed:
            self.reporter.status("[STOP] CAPTCHA wait interrupted by stop")
        return resumed

    async def clear(self, page: Any, token: CancellationToken) -> bool:
        """Make sure ``page`` is free of challenges before extraction.

        Loops check, suspend and re-check on the same page, with no
        re-navigation, until no challenge is found.

        Returns:
            True when the page is clear, False if a stop arrived while
            suspended.
        """
        while True:
            state = await self.check(page)
            if not state.detected:
                return True
            if not await self.wait_for_resume(state, token):
                return False
            self.reporter.status("[info] Resuming on the same page")
