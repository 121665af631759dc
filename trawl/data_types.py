"""Data types shared by the resolver, the drivers and the engine.

This module defines the values that flow through a batch:

1. Target - one resolved unit of work
2. SessionConfig - launch configuration of a browser session
3. CaptchaState - a suspended CAPTCHA checkpoint, kept until resumed
4. ScrapeReport - the terminal artifact of one batch

Immutable values use frozen dataclasses. Records themselves are pydantic
models and live in trawl.common.records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

if TYPE_CHECKING:
    from playwright.async_api import Page

    from trawl.common.records import ScrapeRecord


class TargetKind(Enum):
    """What a Target's value denotes.

    Values:
        QUERY: A free-text search query (maps, faq).
        DOMAIN: A bare domain name (dns).
        URL: A page URL given directly by the user (backup).
        SITEMAP_ENTRY: A page URL discovered by expanding a sitemap (backup).
    """

    QUERY = "query"
    DOMAIN = "domain"
    URL = "url"
    SITEMAP_ENTRY = "sitemap_entry"


class ScrapeMode(Enum):
    """The four scraping modes a batch can run in."""

    MAPS = "maps"
    DNS = "dns"
    FAQ = "faq"
    BACKUP = "backup"

    @property
    def target_kind(self) -> TargetKind:
        """The kind raw input for this mode is resolved as."""
        return {
            ScrapeMode.MAPS: TargetKind.QUERY,
            ScrapeMode.DNS: TargetKind.DOMAIN,
            ScrapeMode.FAQ: TargetKind.QUERY,
            ScrapeMode.BACKUP: TargetKind.SITEMAP_ENTRY,
        }[self]

    @property
    def folder_name(self) -> str:
        """Sub-folder of the base output directory used for this mode."""
        return self.value


@dataclass(frozen=True)
class Target:
    """One resolved unit of scraping work.

    Created by TargetResolver from the raw input and consumed once per run.

    Attributes:
        kind: What the value denotes.
        value: The query, domain or URL.
        source_sitemap: URL of the sitemap this target was discovered in,
            if it came from a sitemap expansion.
    """

    kind: TargetKind
    value: str
    source_sitemap: str | None = None

    @property
    def sitemap_name(self) -> str | None:
        """Basename of the originating sitemap without its .xml suffix."""
        if self.source_sitemap is None:
            return None
        path = urlparse(self.source_sitemap).path or self.source_sitemap
        name = PurePosixPath(path).name
        return name[:-4] if name.endswith(".xml") else name

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SessionConfig:
    """Launch configuration of a browser session.

    Attributes:
        headless: Run the browser without a visible window.
        proxy: Proxy server passed to the browser, or None.
    """

    headless: bool = True
    proxy: str | None = None


@dataclass
class CaptchaState:
    """Result of a CAPTCHA checkpoint evaluation.

    When detected, the page is kept open so the same navigation context
    (cookies, storage, scroll position) is reused once the user has solved
    the challenge.

    Attributes:
        detected: Whether an anti-bot challenge was found on the page.
        page: The page the challenge was found on.
    """

    detected: bool
    page: Page | Any


@dataclass
class ScrapeReport:
    """Terminal artifact of one batch.

    Built incrementally while the batch runs and finalized exactly once,
    after batch-level deduplication, before being handed to the persister.

    Attributes:
        mode: The mode the batch ran in.
        records: Collected records, deduplicated once finalized.
        started_at: When the batch started.
        interrupted: True if the batch ended because a stop was requested.
        duplicates_removed: Number of records dropped by deduplication.
        finished_at: When the report was finalized.
        output_path: Where the persister wrote the report, if anywhere.
    """

    mode: ScrapeMode
    records: list[ScrapeRecord] = field(default_factory=list)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    interrupted: bool = False
    duplicates_removed: int = 0
    finished_at: datetime | None = None
    output_path: Path | None = None

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def finalize(
        self, records: list[ScrapeRecord], duplicates_removed: int
    ) -> None:
        """Freeze the report with its final, deduplicated record set.

        Args:
            records: The deduplicated records.
            duplicates_removed: How many records deduplication dropped.

        Raises:
            RuntimeError: If the report was already finalized.
        """
        if self.finalized:
            raise RuntimeError(
                f"{self.mode.value} report was already finalized"
            )
        self.records = list(records)
        self.duplicates_removed = duplicates_removed
        self.finished_at = datetime.now(timezone.utc)
