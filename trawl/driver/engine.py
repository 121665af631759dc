"""Control channel of the scraping engine.

The engine runs at most one batch at a time. Front-ends (CLI, web) talk to
it through three operations:

- start(): run a batch to completion and return its report
- stop(): request a cooperative stop of the running batch
- confirm_captcha_resolved(): resume a batch suspended on a CAPTCHA

Status events of every batch are published on the engine's StatusReporter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from trawl.common.cancellation import CancellationToken
from trawl.common.exceptions import EngineBusyError, InputError
from trawl.common.options import BatchOptions
from trawl.common.status import StatusReporter
from trawl.data_types import ScrapeMode, ScrapeReport
from trawl.driver.backup_driver import BackupDriver
from trawl.driver.base_driver import BaseModeDriver
from trawl.driver.browser import BrowserSessionManager
from trawl.driver.dns_driver import DnsDriver
from trawl.driver.faq_driver import FaqDriver
from trawl.driver.maps_driver import MapsDriver
from trawl.driver.pagination import SettleTimings

logger = logging.getLogger(__name__)

DRIVERS: dict[ScrapeMode, type[BaseModeDriver]] = {
    ScrapeMode.MAPS: MapsDriver,
    ScrapeMode.DNS: DnsDriver,
    ScrapeMode.FAQ: FaqDriver,
    ScrapeMode.BACKUP: BackupDriver,
}


@dataclass
class RunInfo:
    """State of the current or last batch.

    Attributes:
        mode: Mode of the batch.
        raw_targets: The input as given.
        status: running, stopping, finished or failed.
        started_at: When the batch started.
        finished_at: When the batch ended, if it has.
        report: The finalized report, once available.
    """

    mode: ScrapeMode
    raw_targets: str
    status: str = "running"
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    report: ScrapeReport | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        report = self.report
        return {
            "mode": self.mode.value,
            "targets": self.raw_targets,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat()
            if self.finished_at
            else None,
            "records": len(report.records) if report else None,
            "duplicates_removed": report.duplicates_removed if report else None,
            "interrupted": report.interrupted if report else None,
            "output_path": str(report.output_path)
            if report and report.output_path
            else None,
        }


class ScrapingEngine:
    """Runs batches one at a time.

    Args:
        base_output: Base output folder for every mode.
        reporter: Status channel. A new one is created when omitted.
        browser_manager: Shared browser session factory for the drivers.
        http_client: HTTP client handed to the drivers. When None, each
            batch creates its own.
        timings: Settle waits override for every mode.
        driver_kwargs: Extra constructor arguments per mode.
    """

    def __init__(
        self,
        base_output: Path,
        reporter: StatusReporter | None = None,
        browser_manager: BrowserSessionManager | None = None,
        http_client: httpx.AsyncClient | None = None,
        timings: SettleTimings | None = None,
        driver_kwargs: dict[ScrapeMode, dict[str, Any]] | None = None,
    ) -> None:
        self.base_output = Path(base_output)
        self.reporter = reporter or StatusReporter()
        self.token = CancellationToken()
        self.browser_manager = browser_manager
        self.http_client = http_client
        self.timings = timings
        self.driver_kwargs = driver_kwargs or {}
        self.current: RunInfo | None = None
        self._driver: BaseModeDriver | None = None

    @property
    def running(self) -> bool:
        return self.current is not None and self.current.status in (
            "running",
            "stopping",
        )

    def create_driver(
        self, mode: ScrapeMode, options: BatchOptions
    ) -> BaseModeDriver:
        driver_class = DRIVERS[mode]
        return driver_class(
            options,
            self.token,
            self.reporter,
            self.base_output,
            browser_manager=self.browser_manager,
            http_client=self.http_client,
            timings=self.timings,
            **self.driver_kwargs.get(mode, {}),
        )

    def _begin(
        self,
        raw_targets: str,
        mode: ScrapeMode | str,
        options: BatchOptions | dict[str, Any] | None,
    ) -> tuple[BaseModeDriver, RunInfo]:
        # No await in here: the busy check and the claim happen atomically.
        if self.running:
            assert self.current is not None
            raise EngineBusyError(self.current.mode.value)
        mode = ScrapeMode(mode)
        if not isinstance(options, BatchOptions):
            try:
                options = BatchOptions.from_mapping(options)
            except InputError as e:
                self.reporter.status(f"[error] {e.message}")
                raise
        driver = self.create_driver(mode, options)
        self.token.reset()
        self._driver = driver
        self.current = RunInfo(mode=mode, raw_targets=raw_targets)
        logger.info(f"Starting {mode.value} batch: {raw_targets}")
        return driver, self.current

    async def _run(
        self, driver: BaseModeDriver, info: RunInfo, raw_targets: str
    ) -> ScrapeReport:
        try:
            info.report = await driver.run(raw_targets)
        except Exception:
            info.status = "failed"
            raise
        else:
            info.status = "finished"
        finally:
            info.finished_at = datetime.now(timezone.utc)
            self._driver = None
            logger.info(f"{info.mode.value} batch {info.status}")
        return info.report

    async def start(
        self,
        raw_targets: str,
        mode: ScrapeMode | str,
        options: BatchOptions | dict[str, Any] | None = None,
    ) -> ScrapeReport:
        """Run one batch to completion.

        Args:
            raw_targets: Comma-separated queries, domains or URLs, or a
                single sitemap URL in backup mode.
            mode: The scraping mode.
            options: Batch options, as a model or a raw mapping.

        Returns:
            The finalized report.

        Raises:
            EngineBusyError: If a batch is already running.
            InputError: If the options do not validate.
            ValueError: If the mode is unknown.
        """
        driver, info = self._begin(raw_targets, mode, options)
        return await self._run(driver, info, raw_targets)

    def launch(
        self,
        raw_targets: str,
        mode: ScrapeMode | str,
        options: BatchOptions | dict[str, Any] | None = None,
    ) -> asyncio.Task[ScrapeReport]:
        """Start a batch in the background.

        Busy and validation errors are raised here, before the task exists.
        """
        driver, info = self._begin(raw_targets, mode, options)
        return asyncio.create_task(self._run(driver, info, raw_targets))

    def stop(self) -> bool:
        """Request a stop of the running batch.

        Returns:
            False if no batch was running.
        """
        if not self.running:
            return False
        assert self.current is not None
        self.current.status = "stopping"
        self.token.request_stop()
        return True

    def confirm_captcha_resolved(self) -> bool:
        """Resume a batch waiting on a CAPTCHA.

        Returns:
            False if no batch was waiting.
        """
        if self._driver is None or self._driver.captcha.pending is None:
            return False
        self._driver.captcha.confirm_resolved()
        return True
