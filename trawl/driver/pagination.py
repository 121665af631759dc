"""Generic pagination loop over a listing surface.

The loop drives one listing (Maps result cards, "People also ask"
questions) through the states::

    FETCH_PAGE -> PROCESS_CARD* -> ADVANCE -> FETCH_PAGE | DONE

and stops on the first of these conditions, checked in this order:

1. a stop was requested on the cancellation token
2. the configured maximum number of records was reached
3. fixed point: the page lists as many items as in the previous iteration
   and none of them is new
4. the surface could not advance (no next control, or advancing failed)

An optional page bound is honoured as well. Items already seen (by natural
key) are skipped, so pages that re-render overlapping content are not
processed twice. A failure on one item is reported and the loop moves on.

Settle waits between DOM interactions let client-side rendering finish
before the DOM is read again. They are required for correct reads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Protocol, TypeVar

from trawl.common.cancellation import CancellationToken
from trawl.common.status import StatusReporter

logger = logging.getLogger(__name__)

I = TypeVar("I")  # noqa: E741
R = TypeVar("R")


class ListingSurface(Protocol[I, R]):
    """A paginated listing as seen by the loop."""

    async def list_items(self) -> list[I]:
        """Items currently present on the page, in display order."""
        ...

    async def item_key(self, item: I) -> str:
        """Natural key of an item, e.g. its displayed text."""
        ...

    async def extract(self, item: I) -> R | None:
        """Open the item and build its record. None means nothing to keep."""
        ...

    async def advance(self) -> bool:
        """Move to the next page. False when there is none."""
        ...


@dataclass(frozen=True)
class SettleTimings:
    """Fixed render-settle waits, in seconds.

    Attributes:
        after_consent: After dismissing the consent dialog.
        after_open: After opening an item (click) before reading details.
        between_items: After processing one item.
        after_advance: After moving to the next page.
    """

    after_consent: float = 3.0
    after_open: float = 1.5
    between_items: float = 1.0
    after_advance: float = 7.0

    @classmethod
    def none(cls) -> SettleTimings:
        return cls(0.0, 0.0, 0.0, 0.0)


class StopReason(str, Enum):
    CANCELLED = "cancelled"
    MAX_RECORDS = "max_records"
    FIXED_POINT = "fixed_point"
    NO_NEXT = "no_next"
    MAX_PAGES = "max_pages"


@dataclass
class PaginationResult(Generic[R]):
    """Outcome of one pagination run.

    Attributes:
        records: Records in extraction order.
        stop_reason: Why the loop ended.
        pages: Number of pages fetched.
        failures: Number of items whose extraction failed.
    """

    records: list[R] = field(default_factory=list)
    stop_reason: StopReason = StopReason.NO_NEXT
    pages: int = 0
    failures: int = 0


class PaginationLoop(Generic[I, R]):
    """Runs the pagination state machine over one ListingSurface.

    Args:
        surface: The listing to walk.
        token: Checked at the top of every iteration and before every item.
        reporter: Receives per-item failure lines.
        max_records: Stop once this many records were collected.
        max_pages: Stop after this many pages.
        timings: Settle waits used between items and after advancing.
        label: Prefix for status lines (the query being processed).
        on_record: Called with every record as soon as it is extracted, so
            records survive a failure later in the run.
    """

    def __init__(
        self,
        surface: ListingSurface[I, R],
        token: CancellationToken,
        reporter: StatusReporter,
        max_records: int | None = None,
        max_pages: int | None = None,
        timings: SettleTimings | None = None,
        label: str = "",
        on_record: Callable[[R], None] | None = None,
    ) -> None:
        self.surface = surface
        self.token = token
        self.reporter = reporter
        self.max_records = max_records
        self.max_pages = max_pages
        self.timings = timings or SettleTimings()
        self.label = label
        self.on_record = on_record
        self._seen: set[str] = set()

    def _record_limit_reached(self, result: PaginationResult[R]) -> bool:
        return (
            self.max_records is not None
            and len(result.records) >= self.max_records
        )

    async def run(self) -> PaginationResult[R]:
        """Walk the listing until a termination condition holds.

        Returns:
            The collected records and the reason the loop stopped.
        """
        result: PaginationResult[R] = PaginationResult()
        last_count: int | None = None

        while True:
            # FETCH_PAGE
            if self.token.is_stop_requested():
                result.stop_reason = StopReason.CANCELLED
                break
            if self._record_limit_reached(result):
                result.stop_reason = StopReason.MAX_RECORDS
                break

            items = await self.surface.list_items()
            keyed = [(await self._key(item), item) for item in items]
            has_unseen = any(
                key is not None and key not in self._seen for key, _ in keyed
            )
            unchanged = last_count is not None and len(items) == last_count
            if unchanged and not has_unseen:
                result.stop_reason = StopReason.FIXED_POINT
                break
            last_count = len(items)
            result.pages += 1
            logger.debug(
                f"{self.label}: page {result.pages} lists {len(items)} items"
            )

            # PROCESS_CARD*
            for key, item in keyed:
                if self.token.is_stop_requested():
                    break
                if self._record_limit_reached(result):
                    break
                if key is None or key in self._seen:
                    continue
                self._seen.add(key)
                await self._process(key, item, result)

            if self.token.is_stop_requested():
                result.stop_reason = StopReason.CANCELLED
                break
            if self._record_limit_reached(result):
                result.stop_reason = StopReason.MAX_RECORDS
                break
            if self.max_pages is not None and result.pages >= self.max_pages:
                result.stop_reason = StopReason.MAX_PAGES
                break

            # ADVANCE
            try:
                advanced = await self.surface.advance()
            except Exception as e:
                self.reporter.status(
                    f"[!] {self.label}: could not move to the next page: {e}"
                )
                advanced = False
            if not advanced:
                result.stop_reason = (
                    StopReason.CANCELLED
                    if self.token.is_stop_requested()
                    else StopReason.NO_NEXT
                )
                break
            await self.token.sleep(self.timings.after_advance)

        logger.info(
            f"{self.label}: pagination stopped ({result.stop_reason.value}) "
            f"after {result.pages} pages, {len(result.records)} records"
        )
        return result

    async def _key(self, item: I) -> str | None:
        try:
            return await self.surface.item_key(item)
        except Exception as e:
            self.reporter.status(f"[x] {self.label}: unreadable item: {e}")
            return None

    async def _process(
        self, key: str, item: I, result: PaginationResult[R]
    ) -> None:
        try:
            record = await self.surface.extract(item)
        except Exception as e:
            result.failures += 1
            self.reporter.status(f"[x] {self.label}: error on '{key}': {e}")
            return
        if record is not None:
            result.records.append(record)
            if self.on_record is not None:
                self.on_record(record)
        await self.token.sleep(self.timings.between_items)
