"""Cooperative cancellation for a batch.

A CancellationToken is created per engine and passed by reference into
every orchestration call. Loops check it at the top of every iteration and
after every slow browser or network call; nothing is ever interrupted
mid-operation. Within a batch the token only moves from "running" to
"stop requested"; it is reset at the start of the next batch.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Shared stop flag with an awaitable side.

    The flag is backed by an asyncio.Event so suspended waits (a pending
    CAPTCHA, a settle delay) can be woken up as soon as a stop arrives.

    Example::

        token = CancellationToken()
        while not token.is_stop_requested():
            await do_step()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def request_stop(self) -> None:
        """Request that the running batch stops at its next check point.

        Idempotent; safe to call when nothing is running.
        """
        if not self._event.is_set():
            logger.info("Stop requested")
        self._event.set()

    def is_stop_requested(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        """Clear the flag. Only called when a new batch starts."""
        self._event.clear()

    async def wait(self) -> None:
        """Block until a stop is requested."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``, waking early on a stop request.

        Returns:
            True if the full delay elapsed, False if a stop cut it short.
        """
        if seconds <= 0:
            return not self.is_stop_requested()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
