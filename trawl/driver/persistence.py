"""Persistence of batch reports as CSV files.

Output layout under the base output folder::

    <base>/maps/maps_output-<queries>-<ms>.csv
    <base>/dns/dns_output-<input>-<suffix>.csv
    <base>/faq/people_also_ask-<input>.csv
    <base>/backup/<input>/<input>+seo_backup.csv   (semicolon separated)
    <base>/backup/<input>/<sitemap>/<page title>/... per-page artifacts
    <base>/backup/<input>/media/...

Rows come from each record's to_row(). Columns are the union of every row's
keys in first-seen order, so a DNS batch with heterogeneous checks still
writes one rectangular table.
"""

from __future__ import annotations

import csv
import logging
import re
import secrets
import string
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from trawl.common.html_audit import sanitize_filename
from trawl.common.status import StatusReporter
from trawl.data_types import ScrapeReport

logger = logging.getLogger(__name__)


# =============================================================================
# File naming
# =============================================================================


def maps_filename(queries: list[str], now_ms: int | None = None) -> str:
    """``maps_output-<queries>-<ms>.csv``; the query part is capped at 40."""
    joined = re.sub(r"\s+", "_", "_".join(queries))
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "", joined)
    if len(cleaned) > 40:
        cleaned = f"{cleaned[:40]}..."
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"maps_output-{cleaned}-{stamp}.csv"


def dns_filename(raw: str, suffix: str | None = None) -> str:
    if suffix is None:
        alphabet = string.ascii_lowercase + string.digits
        suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"dns_output-{sanitize_filename(raw) or 'query'}-{suffix}.csv"


def faq_filename(raw: str) -> str:
    return f"people_also_ask-{sanitize_filename(raw) or 'query'}.csv"


def backup_folder_name(raw: str) -> str:
    return sanitize_filename(raw) or "global"


def backup_report_filename(raw: str) -> str:
    return f"{backup_folder_name(raw)}+seo_backup.csv"


# =============================================================================
# Writers
# =============================================================================


def collect_columns(rows: Iterable[dict[str, Any]]) -> list[str]:
    columns: dict[str, None] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)


def write_rows_csv(
    path: Path,
    rows: list[dict[str, Any]],
    delimiter: str = ",",
) -> Path:
    """Write dict rows to ``path``, creating parent folders.

    Missing values are written as empty cells.

    Returns:
        The path written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    columns = collect_columns(rows)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(
            f, fieldnames=columns, delimiter=delimiter, restval=""
        )
        writer.writeheader()
        for row in rows:
            writer.writerow(
                {key: "" if value is None else value for key, value in row.items()}
            )
    logger.debug(f"Wrote {len(rows)} rows to {path}")
    return path


class Persister:
    """Writes a finalized ScrapeReport to disk.

    Args:
        reporter: Receives the "saved" status lines.
    """

    def __init__(self, reporter: StatusReporter) -> None:
        self.reporter = reporter

    def persist(
        self,
        report: ScrapeReport,
        folder: Path,
        filename: str,
        delimiter: str = ",",
    ) -> Path | None:
        """Write the report's records as one CSV file.

        Args:
            report: A finalized report.
            folder: Destination folder, created if needed.
            filename: File name inside ``folder``.
            delimiter: CSV field separator.

        Returns:
            The written path, or None when there was nothing to write.
        """
        if not report.records:
            self.reporter.status("[!] No data to save.")
            return None

        rows = [record.to_row() for record in report.records]
        path = write_rows_csv(folder / filename, rows, delimiter=delimiter)
        report.output_path = path
        self.reporter.status(f"[+] Records saved to CSV file ({path.name})")
        self.reporter.status(
            f"[success] Wrote {len(rows)} records in "
            f"{report.elapsed_seconds:.1f}s"
        )
        return path
