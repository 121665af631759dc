"""Batch-level result collection and deduplication.

Records are collected in arrival order across every target of a batch and
deduplicated once, after the last target finished and before persistence.
The first occurrence of a key wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from typing import Generic, TypeVar

from trawl.common.records import ScrapeRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=ScrapeRecord)


def remove_duplicates(
    records: Iterable[T], key: Callable[[T], Hashable]
) -> list[T]:
    """Keep the first record of every key, preserving order.

    Args:
        records: Records in arrival order.
        key: Extracts the composite identity of a record.

    Returns:
        A new list, never longer than the input.

    Example::

        remove_duplicates(rows, key=lambda r: (r["name"], r["address"]))
    """
    seen: set[Hashable] = set()
    kept: list[T] = []
    for record in records:
        record_key = key(record)
        if record_key in seen:
            continue
        seen.add(record_key)
        kept.append(record)
    return kept


class ScrapeResultCollector(Generic[R]):
    """Accumulates the records of one batch.

    Args:
        key: Composite key used by deduplicate(). Defaults to the record's
            own dedup_key().
    """

    def __init__(
        self, key: Callable[[R], Hashable] | None = None
    ) -> None:
        self._key = key or (lambda record: record.dedup_key())
        self._records: list[R] = []
        self._deduplicated = False

    def add(self, record: R) -> None:
        self._records.append(record)

    def extend(self, records: Iterable[R]) -> None:
        self._records.extend(records)

    @property
    def records(self) -> list[R]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def deduplicate(self) -> int:
        """Drop every record whose key was already seen.

        Returns:
            The number of records removed.

        Raises:
            RuntimeError: If the batch was already deduplicated.
        """
        if self._deduplicated:
            raise RuntimeError("Batch results were already deduplicated")
        before = len(self._records)
        self._records = remove_duplicates(self._records, self._key)
        self._deduplicated = True
        removed = before - len(self._records)
        logger.debug(f"Deduplicated {before} records, removed {removed}")
        return removed
