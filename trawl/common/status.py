"""Status reporting for running batches.

The StatusReporter publishes human-readable progress lines and control
events to whoever listens: the CLI printing lines to the terminal, the web
surface forwarding them over a WebSocket, or nobody at all. Publishing is
fire-and-forget. A listener that fails is detached and publishing never
raises into the scraping code.

Event kinds:

- status: one human-readable progress line
- reset_logs: sent once at the start of a batch, before any other event
- user_action_required: the batch is suspended until the user acts
  (solves a CAPTCHA) and confirms
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class StatusKind(str, Enum):
    """Kinds of events carried by the status channel."""

    STATUS = "status"
    RESET_LOGS = "reset_logs"
    USER_ACTION_REQUIRED = "user_action_required"


@dataclass
class StatusEvent:
    """One event on the status channel.

    Attributes:
        kind: What the event means to a listener.
        message: Human-readable text (empty for reset_logs).
        timestamp: When the event was published.
    """

    kind: StatusKind
    message: str = ""
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Serialize to JSON for WebSocket transport."""
        return json.dumps(self.to_dict())


StatusListener = Callable[[StatusEvent], None]


class StatusReporter:
    """Fan-out publisher for StatusEvents.

    Listeners are plain callables invoked synchronously, or subscriber
    queues obtained from subscribe() for async consumers.

    Example::

        reporter = StatusReporter()
        reporter.add_listener(lambda event: print(event.message))
        reporter.status("Searching: pizza roma")
    """

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []
        self._queues: list[asyncio.Queue[StatusEvent]] = []

    def add_listener(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue[StatusEvent]:
        """Register a queue that receives every published event.

        Args:
            maxsize: Queue bound. A full queue counts as a dead subscriber
                and is detached.

        Returns:
            The queue to read events from.
        """
        queue: asyncio.Queue[StatusEvent] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[StatusEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def listener_count(self) -> int:
        return len(self._listeners) + len(self._queues)

    # --- Publishing ---

    def status(self, text: str) -> None:
        """Publish one progress line."""
        self.publish(StatusEvent(StatusKind.STATUS, text))

    def reset_logs(self) -> None:
        """Tell listeners to clear what they show for the previous batch."""
        self.publish(StatusEvent(StatusKind.RESET_LOGS))

    def user_action_required(self, text: str) -> None:
        """Ask the user to act (solve a CAPTCHA) and confirm."""
        self.publish(StatusEvent(StatusKind.USER_ACTION_REQUIRED, text))

    def publish(self, event: StatusEvent) -> None:
        """Deliver an event to every listener and subscriber queue.

        Delivery failures detach the failing listener and are only logged.
        """
        if event.kind is StatusKind.USER_ACTION_REQUIRED:
            logger.warning(event.message)
        elif event.kind is StatusKind.STATUS:
            logger.info(event.message)
        else:
            logger.debug(f"Status channel event: {event.kind.value}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Detaching status listener {listener!r}: {e}")
                self.remove_listener(listener)

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Detaching full status subscriber queue")
                self.unsubscribe(queue)
