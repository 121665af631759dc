"""Wayback Machine history of a domain, from the CDX API."""

from __future__ import annotations

import logging
from datetime import date

import httpx

from trawl.common.records import WaybackHistory

logger = logging.getLogger(__name__)

CDX_URL = "https://web.archive.org/cdx/search/cdx"
CDX_TIMEOUT = 30.0


def _snapshot_date(timestamp: str) -> date:
    return date(int(timestamp[0:4]), int(timestamp[4:6]), int(timestamp[6:8]))


def summarize_cdx(rows: list[list[str]]) -> WaybackHistory:
    """Summarize a CDX JSON answer.

    The first row is the header; the timestamp is the second column of every
    snapshot row. Rows are in capture order.
    """
    snapshots = rows[1:]
    if not snapshots:
        return WaybackHistory()
    first = snapshots[0][1]
    last = snapshots[-1][1]
    return WaybackHistory(
        snapshots=len(snapshots),
        first_date=_snapshot_date(first).isoformat(),
        last_date=_snapshot_date(last).isoformat(),
        years_online=int(last[:4]) - int(first[:4]),
    )


async def fetch_wayback_history(
    client: httpx.AsyncClient, domain: str, url: str = CDX_URL
) -> WaybackHistory:
    """Fetch the capture history of ``domain``.

    Raises:
        httpx.HTTPError: On transport failures and error statuses.
    """
    response = await client.get(
        url,
        params={"url": domain, "output": "json"},
        timeout=CDX_TIMEOUT,
    )
    response.raise_for_status()
    if not response.content.strip():
        return WaybackHistory()
    history = summarize_cdx(response.json())
    logger.debug(f"Wayback: {domain} has {history.snapshots} snapshots")
    return history
