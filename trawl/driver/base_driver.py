"""Shared batch skeleton for the mode drivers.

Every mode runs the same outer sequence:

1. reset the listeners' logs
2. validate input and options; fatal errors abort with one status line
3. resolve targets
4. process targets, each under its own error boundary
5. deduplicate the batch
6. persist whatever was collected (also when a target step raised)
7. publish the final status line

Subclasses implement process_target() (and override process_targets() when
targets do not run sequentially) plus the output naming hooks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import ClassVar

import httpx
from playwright.async_api import Page

from trawl.common.cancellation import CancellationToken
from trawl.common.dedup import ScrapeResultCollector
from trawl.common.exceptions import (
    FatalBatchError,
    InputError,
    ResolutionError,
)
from trawl.common.options import BatchOptions
from trawl.common.records import ScrapeRecord
from trawl.common.status import StatusReporter
from trawl.common.targets import TargetResolver
from trawl.data_types import ScrapeMode, ScrapeReport, SessionConfig, Target
from trawl.driver.browser import USER_AGENT, BrowserSessionManager
from trawl.driver.captcha import CaptchaCheckpoint
from trawl.driver.pagination import SettleTimings
from trawl.driver.persistence import Persister

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30.0

CONSENT_SELECTOR = (
    'button[aria-label="Accept all"], '
    'button[aria-label="Accetta tutto"], #L2AGLb'
)


async def accept_consent(
    page: Page, token: CancellationToken, wait: float
) -> bool:
    """Click the consent dialog away if it is shown.

    Returns:
        True if a consent button was clicked.
    """
    button = await page.query_selector(CONSENT_SELECTOR)
    if button is None:
        return False
    await button.click()
    await token.sleep(wait)
    return True


class BaseModeDriver(ABC):
    """Runs one batch of one mode.

    A driver instance is single-use: one run() per instance.

    Args:
        options: Validated batch options.
        token: Shared cancellation token of the engine.
        reporter: Status channel.
        base_output: Base output folder; the mode folder is created inside.
        browser_manager: Opens browser sessions. Defaults to Playwright.
        http_client: HTTP client for sitemap fetches and enrichment. When
            None, one is created for the duration of the run.
        timings: Settle waits for browser interactions.
    """

    mode: ClassVar[ScrapeMode]
    uses_browser: ClassVar[bool] = True

    def __init__(
        self,
        options: BatchOptions,
        token: CancellationToken,
        reporter: StatusReporter,
        base_output: Path,
        browser_manager: BrowserSessionManager | None = None,
        http_client: httpx.AsyncClient | None = None,
        timings: SettleTimings | None = None,
    ) -> None:
        self.options = options
        self.token = token
        self.reporter = reporter
        self.base_output = Path(base_output)
        self.browser_manager = browser_manager or BrowserSessionManager()
        self.timings = timings or self.default_timings()
        self.captcha = CaptchaCheckpoint(reporter)
        self.persister = Persister(reporter)
        self._http_client = http_client
        self._client: httpx.AsyncClient | None = None
        self.session_config = SessionConfig()

    # --- Hooks ---

    def default_timings(self) -> SettleTimings:
        return SettleTimings()

    def validate(self, raw_targets: str) -> None:
        """Raise a FatalBatchError when the batch cannot start."""
        if not raw_targets or not raw_targets.strip():
            raise InputError("No targets given")

    @abstractmethod
    async def process_target(
        self, target: Target, collector: ScrapeResultCollector
    ) -> None:
        """Scrape one target, adding records to ``collector`` as they come."""

    @abstractmethod
    def output_filename(self, raw_targets: str, targets: list[Target]) -> str:
        """File name of the batch report."""

    def output_folder(self, raw_targets: str) -> Path:
        if self.options.output_folder is not None:
            return Path(self.options.output_folder)
        return self.base_output / self.mode.folder_name

    def persist(
        self, report: ScrapeReport, raw_targets: str, targets: list[Target]
    ) -> Path | None:
        return self.persister.persist(
            report,
            self.output_folder(raw_targets),
            self.output_filename(raw_targets, targets),
        )

    # --- Shared resources ---

    @property
    def http(self) -> httpx.AsyncClient:
        """HTTP client of the running batch."""
        if self._client is None:
            raise RuntimeError("HTTP client is only available during run()")
        return self._client

    @asynccontextmanager
    async def _http_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(
            timeout=HTTP_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            yield client

    # --- Batch skeleton ---

    async def run(self, raw_targets: str) -> ScrapeReport:
        """Run the batch over the comma-separated ``raw_targets``.

        Returns:
            The finalized report. ``report.output_path`` is set when
            something was written.
        """
        self.reporter.reset_logs()
        report = ScrapeReport(mode=self.mode)

        try:
            self.validate(raw_targets)
            if self.uses_browser:
                self.session_config = self.options.session_config()
        except FatalBatchError as e:
            self.reporter.status(f"[error] {e.message}")
            logger.error(f"{self.mode.value} batch not started: {e}")
            report.finalize([], 0)
            return report

        collector: ScrapeResultCollector[ScrapeRecord] = ScrapeResultCollector()
        targets: list[Target] = []
        self.reporter.status(
            f"[INFO] Files will be saved in: {self.output_folder(raw_targets)}"
        )

        async with self._http_scope() as client:
            self._client = client
            try:
                targets = await self.resolve(raw_targets)
                if targets:
                    await self.process_targets(targets, collector)
            finally:
                self._client = None
                self._finish(report, collector, raw_targets, targets)

        return report

    async def resolve(self, raw_targets: str) -> list[Target]:
        resolver = TargetResolver(self.reporter, client=self.http)
        try:
            targets = await resolver.resolve(
                raw_targets, self.mode.target_kind, self.token
            )
        except ResolutionError as e:
            self.reporter.status(f"[error] {e.sitemap_url}: {e.reason}")
            return []
        self.reporter.status(f"[info] {len(targets)} targets to process")
        return targets

    async def process_targets(
        self, targets: list[Target], collector: ScrapeResultCollector
    ) -> None:
        """Process targets one after the other."""
        for target in targets:
            if self.token.is_stop_requested():
                self.reporter.status(
                    f"[STOP] Interrupted before starting: {target}"
                )
                break
            await self.run_target(target, collector)

    async def run_target(
        self, target: Target, collector: ScrapeResultCollector
    ) -> None:
        """Per-target error boundary. Nothing raised here stops the batch."""
        try:
            await self.process_target(target, collector)
        except Exception as e:
            logger.exception(f"{self.mode.value} target {target} failed")
            self.reporter.status(f"[error] Error on {target}: {e}")

    def _finish(
        self,
        report: ScrapeReport,
        collector: ScrapeResultCollector,
        raw_targets: str,
        targets: list[Target],
    ) -> None:
        if self.token.is_stop_requested():
            self.reporter.status(
                "[STOP] Scraping interrupted by user. Saving data..."
            )
        removed = collector.deduplicate()
        self.reporter.status(f"[info] Removed {removed} duplicates.")
        report.interrupted = self.token.is_stop_requested()
        report.finalize(collector.records, removed)

        self.persist(report, raw_targets, targets)

        if report.interrupted:
            self.reporter.status("[saved] Data saved after interruption.")
        else:
            self.reporter.status("[done] Data saved successfully.")
