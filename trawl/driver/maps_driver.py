"""Maps mode: business listings from the local-services results.

Queries run one after the other, each in its own browser session that is
closed before the next query starts. Per query the driver:

1. opens the listing page and accepts the consent dialog if shown
2. passes the CAPTCHA checkpoint
3. reads the estimated total of results
4. walks the result cards with PaginationLoop, one MapsRecord per card
5. enriches each listing from its website (email, VAT id) and, for a VAT id,
   from the VIES registry (company name)

Enrichment is best-effort: failures are reported and the record is kept.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

import httpx
from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from trawl.common.dedup import ScrapeResultCollector
from trawl.common.exceptions import (
    InputError,
    ItemExtractionError,
    NavigationError,
)
from trawl.common.html_audit import extract_email, extract_vat_id
from trawl.common.records import MISSING, MapsRecord
from trawl.common.status import StatusReporter
from trawl.common.targets import split_targets
from trawl.data_types import ScrapeMode, Target
from trawl.driver.base_driver import BaseModeDriver, accept_consent
from trawl.driver.pagination import PaginationLoop, SettleTimings
from trawl.driver.persistence import maps_filename
from trawl.enrichment.vies import ViesClient

logger = logging.getLogger(__name__)

LISTING_URL = (
    "https://www.google.com/localservices/prolist"
    "?hl=en-GB&gl=it&ssta=1&q={q}&oq={q}&src=2"
)
NAVIGATION_TIMEOUT_MS = 60_000
DETAIL_TIMEOUT_MS = 8_000
WEBSITE_TIMEOUT = 12.0

TOTAL_SELECTOR = '[aria-label*="results"]'
CARD_SELECTOR = 'div[data-test-id="organic-list-card"]'
CARD_OPEN_SELECTOR = 'div[role="button"] > div:first-of-type'
NEXT_SELECTOR = 'button[aria-label="Next"]'

NAME_SELECTOR = ".tZPcob"
PHONE_SELECTOR = '[data-phone-number][role="button"][class*=" "] div:last-of-type'
WEBSITE_SELECTOR = ".iPF7ob > div:last-of-type"
ADDRESS_SELECTOR = ".fccl3c"
RATING_SELECTOR = ".pNFZHb .rGaJuf"
RATING_COUNT_SELECTOR = ".QwSaG .leIgTe"

_TOTAL_RE = re.compile(r"of\s+(\d+)", re.IGNORECASE)
_NO_WEBSITE = {MISSING, "", "No website", "Nessun Sito"}


def listing_url(query: str) -> str:
    return LISTING_URL.format(q=quote(query, safe=""))


def parse_total_results(text: str) -> str | None:
    """Estimated total from a "1-20 of 134 results" style label."""
    match = _TOTAL_RE.search(text or "")
    return match.group(1) if match else None


class ListingEnricher:
    """Fills email, VAT id and company name from a listing's website.

    Args:
        client: HTTP client for website fetches.
        vies: VIES client, or None to skip registry lookups.
        reporter: Status channel.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        vies: ViesClient | None,
        reporter: StatusReporter,
    ) -> None:
        self.client = client
        self.vies = vies
        self.reporter = reporter

    async def enrich(self, record: MapsRecord) -> MapsRecord:
        website = record.website.strip()
        if website in _NO_WEBSITE:
            return record
        url = website if website.startswith("http") else f"https://{website}"
        try:
            response = await self.client.get(url, timeout=WEBSITE_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Website of {record.name} unreachable: {e}")
            return record

        html = response.text
        record.email = extract_email(html)
        record.vat_id = extract_vat_id(html)
        if record.vat_id and self.vies is not None:
            self.reporter.status(f"[info] VIES check for: {record.vat_id}")
            try:
                info = await self.vies.check_vat(record.vat_id)
            except httpx.HTTPError as e:
                self.reporter.status(
                    f"[!] VIES lookup failed for {record.vat_id}: {e}"
                )
                return record
            if info is not None and info.name:
                record.company_name = info.name
            else:
                self.reporter.status(f"[!] No VIES data for {record.vat_id}")
        return record


class MapsListingSurface:
    """The result cards of one query, as a ListingSurface."""

    def __init__(
        self,
        page: Page,
        query: str,
        driver: MapsDriver,
        enricher: ListingEnricher | None,
    ) -> None:
        self.page = page
        self.query = query
        self.driver = driver
        self.enricher = enricher
        self._count = 0

    async def list_items(self) -> list[ElementHandle]:
        return await self.page.query_selector_all(CARD_SELECTOR)

    async def item_key(self, item: ElementHandle) -> str:
        return (await item.inner_text()).strip()

    async def _read(self, selector: str) -> str:
        element = await self.page.query_selector(selector)
        if element is None:
            return MISSING
        text = (await element.inner_text()).strip()
        return text or MISSING

    async def extract(self, item: ElementHandle) -> MapsRecord | None:
        button = await item.query_selector(CARD_OPEN_SELECTOR)
        if button is None:
            raise ItemExtractionError(
                (await item.inner_text()).strip()[:40],
                "card has no open control",
                selector=CARD_OPEN_SELECTOR,
            )
        await button.click()
        try:
            await self.page.wait_for_selector(
                NAME_SELECTOR, timeout=DETAIL_TIMEOUT_MS
            )
        except PlaywrightTimeoutError:
            logger.debug(f"{self.query}: detail panel did not open in time")
        await self.driver.token.sleep(self.driver.timings.after_open)

        record = MapsRecord(
            name=await self._read(NAME_SELECTOR),
            address=await self._read(ADDRESS_SELECTOR),
            phone=await self._read(PHONE_SELECTOR),
            website=await self._read(WEBSITE_SELECTOR),
            rating=await self._read(RATING_SELECTOR),
            rating_count=(await self._read(RATING_COUNT_SELECTOR)).strip("()"),
            search_query=self.query,
        )
        if self.enricher is not None:
            await self.enricher.enrich(record)

        self._count += 1
        self.driver.reporter.status(f"[+] ({self._count}) {record.name}")
        return record

    async def advance(self) -> bool:
        button = await self.page.query_selector(NEXT_SELECTOR)
        if button is None:
            return False
        await button.click()
        # the next page may come back as a challenge
        return await self.driver.captcha.clear(self.page, self.driver.token)


class MapsDriver(BaseModeDriver):
    """Collects business listings for every query of the batch."""

    mode = ScrapeMode.MAPS
    _vies: ViesClient | None = None

    def validate(self, raw_targets: str) -> None:
        super().validate(raw_targets)
        if not split_targets(raw_targets):
            raise InputError("No search queries given")

    def output_filename(self, raw_targets: str, targets: list[Target]) -> str:
        return maps_filename([target.value for target in targets])

    def _enricher(self) -> ListingEnricher | None:
        if not self.options.enrich_websites:
            return None
        if self.options.verify_vat and self._vies is None:
            # one limiter for the whole batch
            self._vies = ViesClient(self.http)
        return ListingEnricher(self.http, self._vies, self.reporter)

    async def process_target(
        self, target: Target, collector: ScrapeResultCollector
    ) -> None:
        query = target.value
        self.reporter.status(f"[search] Searching: {query}")
        if self.session_config.proxy:
            self.reporter.status(
                f"[info] Proxy in use: {self.session_config.proxy}"
            )

        async with self.browser_manager.session(self.session_config) as session:
            page = await session.new_page()
            url = listing_url(query)
            try:
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=NAVIGATION_TIMEOUT_MS,
                )
            except PlaywrightTimeoutError as e:
                raise NavigationError(url, "timed out", target=query) from e

            await accept_consent(page, self.token, self.timings.after_consent)
            if not await self.captcha.clear(page, self.token):
                return

            total = None
            label = await page.query_selector(TOTAL_SELECTOR)
            if label is not None:
                total = parse_total_results(await label.text_content() or "")
            self.reporter.status(
                f"[info] Estimated total results: {total or 'UNKNOWN'}"
            )

            surface = MapsListingSurface(page, query, self, self._enricher())
            loop = PaginationLoop(
                surface,
                self.token,
                self.reporter,
                max_records=self.options.max_results,
                timings=self.timings,
                label=query,
                on_record=collector.add,
            )
            await loop.run()

        if self.token.is_stop_requested():
            self.reporter.status(f"[STOP] Stop requested after query: {query}")

    def default_timings(self) -> SettleTimings:
        return SettleTimings(
            after_consent=3.0,
            after_open=1.5,
            between_items=1.0,
            after_advance=7.0,
        )
