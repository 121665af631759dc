"""Backup mode: screenshots, SEO audit and text exports of whole sites.

Targets are URLs, or the pages listed by a sitemap (nested sitemap indexes
are followed). All pages of a batch share one browser session. Output is
nested under ``<base>/backup/<input>/``::

    <input>+seo_backup.csv            global audit, one row per page (;)
    <sitemap>/<title>/<title>.csv     per-page audit (;)
    <sitemap>/<title>/<title>_desktop.png
    <sitemap>/<title>/<title>_mobile.png
    <sitemap>/<title>/<title>.docx    visible text, when requested
    media/<title>_<n>.<ext>           images and videos, when requested

Pages given as plain URLs have no sitemap level. Three variants exist:

- full backup: every artifact above
- audit only (``full_backup=False``): just the global report
- text only: just the .docx exports; no screenshots and no CSV at all
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse

import httpx
from docx import Document
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from trawl.common.dedup import ScrapeResultCollector
from trawl.common.exceptions import BrowserLaunchError, NavigationError
from trawl.common.html_audit import (
    audit_page,
    media_urls,
    sanitize_filename,
    visible_text,
)
from trawl.common.records import BackupRecord
from trawl.data_types import ScrapeMode, ScrapeReport, Target
from trawl.driver.base_driver import BaseModeDriver
from trawl.driver.browser import USER_AGENT, Session
from trawl.driver.persistence import (
    backup_folder_name,
    backup_report_filename,
    write_rows_csv,
)

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 60_000
MEDIA_TIMEOUT = 30.0

DESKTOP_VIEWPORT = {"width": 1920, "height": 1080}
MOBILE_VIEWPORT = {"width": 375, "height": 667}
TEXT_VIEWPORT = {"width": 1280, "height": 800}

REPORT_DELIMITER = ";"


def write_docx(path: Path, text: str) -> Path:
    """Save ``text`` as a one-paragraph Word document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    document = Document()
    document.add_paragraph(text)
    document.save(str(path))
    return path


def media_filename(clean_title: str, index: int, url: str) -> str:
    extension = Path(urlparse(url).path).suffix
    return f"{clean_title}_{index}{extension}"


class BackupDriver(BaseModeDriver):
    """Backs up every page of the batch."""

    mode = ScrapeMode.BACKUP

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._desktop: BrowserContext | None = None
        self._mobile: BrowserContext | None = None
        self._raw_targets = ""

    # --- Output layout ---

    def output_folder(self, raw_targets: str) -> Path:
        return super().output_folder(raw_targets) / backup_folder_name(
            raw_targets
        )

    def output_filename(self, raw_targets: str, targets: list[Target]) -> str:
        return backup_report_filename(raw_targets)

    def persist(
        self, report: ScrapeReport, raw_targets: str, targets: list[Target]
    ) -> Path | None:
        if self.options.text_only:
            self.reporter.status("[info] Text-only backup: no CSV report.")
            return None
        path = self.persister.persist(
            report,
            self.output_folder(raw_targets),
            self.output_filename(raw_targets, targets),
            delimiter=REPORT_DELIMITER,
        )
        if path is not None and self.options.full_backup:
            self.reporter.status("[info] All per-page reports were saved.")
        return path

    def target_folder(self, target: Target) -> Path:
        folder = self.output_folder(self._raw_targets)
        sitemap = target.sitemap_name
        if sitemap:
            return folder / sanitize_filename(sitemap)
        return folder

    # --- Batch ---

    async def run(self, raw_targets: str) -> ScrapeReport:
        self._raw_targets = raw_targets
        return await super().run(raw_targets)

    async def process_targets(
        self, targets: list[Target], collector: ScrapeResultCollector
    ) -> None:
        """Run every page in one browser session."""
        self.reporter.status(f"[info] Found {len(targets)} URLs.")
        try:
            async with self.browser_manager.session(
                self.session_config
            ) as session:
                mobile = None
                if self.options.full_backup and not self.options.text_only:
                    mobile = await self._open_mobile_context(session)
                self._desktop, self._mobile = session.context, mobile
                try:
                    await super().process_targets(targets, collector)
                finally:
                    if self._mobile is not None:
                        await self._mobile.close()
                    self._desktop = self._mobile = None
        except BrowserLaunchError as e:
            self.reporter.status(f"[error] {e.message}")

    async def _open_mobile_context(self, session: Session) -> BrowserContext:
        try:
            return await session.browser.new_context(
                user_agent=USER_AGENT,
                viewport=MOBILE_VIEWPORT,
                is_mobile=True,
                has_touch=True,
            )
        except PlaywrightError as e:
            raise BrowserLaunchError(
                f"Could not create mobile browser context: {e.message}"
            ) from e

    async def process_target(
        self, target: Target, collector: ScrapeResultCollector
    ) -> None:
        if self._desktop is None:
            raise RuntimeError("No browser session is open")
        page = await self._desktop.new_page()
        try:
            if self.options.text_only:
                record = await self.backup_text(page, target)
            elif self.options.full_backup:
                record = await self.backup_page(page, target)
            else:
                record = await self.audit_only(page, target)
        finally:
            await page.close()
        collector.add(record)

    # --- Per-page steps ---

    async def _load(self, page: Page, url: str) -> int:
        try:
            response = await page.goto(
                url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS
            )
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, "timed out") from e
        return response.status if response is not None else 0

    async def backup_page(self, page: Page, target: Target) -> BackupRecord:
        url = target.value
        self.reporter.status(f"[progress] Full backup: {url}")
        await page.set_viewport_size(DESKTOP_VIEWPORT)
        status = await self._load(page, url)
        html = await page.content()
        title = await page.title() or ""
        clean_title = sanitize_filename(title or "page") or "page"
        page_folder = self.target_folder(target) / clean_title
        page_folder.mkdir(parents=True, exist_ok=True)

        if self.options.download_text:
            docx_path = write_docx(
                page_folder / f"{clean_title}.docx", visible_text(html)
            )
            self.reporter.status(f"[info] Text saved to Word: {docx_path}")

        desktop_path = page_folder / f"{clean_title}_desktop.png"
        await page.screenshot(path=str(desktop_path), full_page=True)
        self.reporter.status(f"[success] Desktop screenshot saved: {desktop_path}")

        mobile_path = await self._mobile_screenshot(url, page_folder, clean_title)

        if self.options.download_media:
            await self.download_media(html, url, clean_title)

        record = audit_page(html, url, status=status, title=title)
        csv_path = write_rows_csv(
            page_folder / f"{clean_title}.csv",
            [record.audit_row()],
            delimiter=REPORT_DELIMITER,
        )
        record.sitemap = target.source_sitemap
        record.csv_path = str(csv_path)
        record.desktop_screenshot = str(desktop_path)
        record.mobile_screenshot = str(mobile_path) if mobile_path else ""
        self.reporter.status(f"[success] Page report saved: {csv_path}")
        return record

    async def _mobile_screenshot(
        self, url: str, page_folder: Path, clean_title: str
    ) -> Path | None:
        if self._mobile is None:
            return None
        page = await self._mobile.new_page()
        try:
            await self._load(page, url)
            path = page_folder / f"{clean_title}_mobile.png"
            await page.screenshot(path=str(path), full_page=True)
        finally:
            await page.close()
        self.reporter.status(f"[success] Mobile screenshot saved: {path}")
        return path

    async def audit_only(self, page: Page, target: Target) -> BackupRecord:
        url = target.value
        self.reporter.status(f"[progress] Audit for the global report: {url}")
        await page.set_viewport_size(DESKTOP_VIEWPORT)
        status = await self._load(page, url)
        html = await page.content()
        title = await page.title() or ""
        if self.options.download_media:
            clean_title = sanitize_filename(title or "page") or "page"
            await self.download_media(html, url, clean_title)
        record = audit_page(html, url, status=status, title=title)
        record.sitemap = target.source_sitemap
        return record

    async def backup_text(self, page: Page, target: Target) -> BackupRecord:
        url = target.value
        await page.set_viewport_size(TEXT_VIEWPORT)
        status = await self._load(page, url)
        html = await page.content()
        title = await page.title() or ""
        clean_title = sanitize_filename(title or "page") or "page"
        docx_path = write_docx(
            self.target_folder(target) / clean_title / f"{clean_title}.docx",
            visible_text(html),
        )
        self.reporter.status(f"[info] ({status}) Text saved to Word: {docx_path}")
        return BackupRecord(
            url=url,
            status_http=status,
            meta_title=title,
            sitemap=target.source_sitemap,
        )

    async def download_media(
        self, html: str, page_url: str, clean_title: str
    ) -> list[Path]:
        """Download every image and video of a page into ``media/``.

        Failures are reported per file and do not stop the page.
        """
        urls = media_urls(html, page_url)
        if not urls:
            self.reporter.status(f"[media] No media found on: {page_url}")
            return []
        folder = self.output_folder(self._raw_targets) / "media"
        folder.mkdir(parents=True, exist_ok=True)
        saved = []
        for index, url in enumerate(urls):
            if self.token.is_stop_requested():
                break
            path = folder / media_filename(clean_title, index, url)
            self.reporter.status(f"[media] Downloading: {url} -> {path}")
            try:
                response = await self.http.get(url, timeout=MEDIA_TIMEOUT)
                response.raise_for_status()
            except httpx.HTTPError as e:
                self.reporter.status(f"[x] Media download failed: {url} ({e})")
                continue
            path.write_bytes(response.content)
            saved.append(path)
        return saved
