"""FAQ mode: "People also ask" answers and related searches.

Queries run one after the other, each in its own browser session. The
search results page is checked for a CAPTCHA first; when one is found the
batch suspends until the user confirms, then continues on the same page
without navigating again.

Two extraction modes can be requested per query:

- ask: a bounded breadth traversal of the expandable question list.
  Opening a question makes the page append more questions, so the list is
  walked with PaginationLoop until the question limit or the fixed point.
- related: a one-shot read of the "related searches" panel.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from trawl.common.dedup import ScrapeResultCollector
from trawl.common.exceptions import InputError, NavigationError
from trawl.common.options import FaqScrapeType
from trawl.common.records import FaqRecord
from trawl.data_types import ScrapeMode, Target
from trawl.driver.base_driver import BaseModeDriver, accept_consent
from trawl.driver.pagination import PaginationLoop, SettleTimings
from trawl.driver.persistence import faq_filename

logger = logging.getLogger(__name__)

SEARCH_URL = (
    "https://www.google.com/search?hl=it&gl=it&ie=UTF-8&oe=UTF-8&q={q}"
)
NAVIGATION_TIMEOUT_MS = 60_000
QUESTIONS_TIMEOUT_MS = 5_000

QUESTION_SELECTOR = "div.related-question-pair[data-q]"
RELATED_SELECTOR = '#bres a[href*="/search?"]'

# Visible text of the question's container, skipping script and style nodes.
DESCRIPTION_SCRIPT = """(question) => {
  const pair = Array.from(
    document.querySelectorAll('div.related-question-pair[data-q]')
  ).find((el) => el.getAttribute('data-q') === question);
  if (!pair || !pair.parentElement) return '';
  const iterator = document.createNodeIterator(
    pair.parentElement,
    NodeFilter.SHOW_TEXT,
    {
      acceptNode: (node) => {
        const tag = node.parentElement ? node.parentElement.tagName : '';
        if (['SCRIPT', 'STYLE', 'NOSCRIPT'].includes(tag)) {
          return NodeFilter.FILTER_SKIP;
        }
        return node.nodeValue.trim()
          ? NodeFilter.FILTER_ACCEPT
          : NodeFilter.FILTER_SKIP;
      },
    }
  );
  const parts = [];
  let node;
  while ((node = iterator.nextNode())) parts.push(node.nodeValue.trim());
  return parts.join(' ');
}"""


def search_url(query: str) -> str:
    return SEARCH_URL.format(q=quote(query, safe=""))


class QuestionListSurface:
    """The "People also ask" list of one results page."""

    def __init__(self, page: Page, query: str, driver: FaqDriver) -> None:
        self.page = page
        self.query = query
        self.driver = driver
        self._count = 0

    async def list_items(self) -> list[ElementHandle]:
        return await self.page.query_selector_all(QUESTION_SELECTOR)

    async def item_key(self, item: ElementHandle) -> str:
        return (await item.get_attribute("data-q") or "").strip()

    async def extract(self, item: ElementHandle) -> FaqRecord | None:
        question = await self.item_key(item)
        if not question:
            return None
        self._count += 1
        self.driver.reporter.status(
            f'[process] Question #{self._count}: "{question}"'
        )
        await item.click()
        await self.driver.token.sleep(self.driver.timings.after_open)
        description = await self.page.evaluate(DESCRIPTION_SCRIPT, question)
        preview = f"{description[:80]}..." if description else "[empty]"
        self.driver.reporter.status(f"[success] Answer found: {preview}")
        return FaqRecord(
            kind="ask",
            question=question,
            description=description,
            search_query=self.query,
        )

    async def advance(self) -> bool:
        # Opening questions appends new ones in place; re-reading the list
        # after the settle wait is the next page.
        return True


class FaqDriver(BaseModeDriver):
    """Collects FAQ answers and related searches for every query."""

    mode = ScrapeMode.FAQ

    def default_timings(self) -> SettleTimings:
        return SettleTimings(
            after_consent=3.0,
            after_open=3.0,
            between_items=0.0,
            after_advance=3.0,
        )

    def validate(self, raw_targets: str) -> None:
        super().validate(raw_targets)
        if not self.options.scrape_types:
            raise InputError("Select at least one FAQ scrape type")

    def output_filename(self, raw_targets: str, targets: list[Target]) -> str:
        return faq_filename(raw_targets)

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
            url = search_url(query)
            try:
                await page.goto(
                    url, wait_until="load", timeout=NAVIGATION_TIMEOUT_MS
                )
            except PlaywrightTimeoutError as e:
                raise NavigationError(url, "timed out", target=query) from e

            if not await self.captcha.clear(page, self.token):
                return
            await accept_consent(page, self.token, self.timings.after_consent)

            for scrape_type in self.options.scrape_types:
                if self.token.is_stop_requested():
                    break
                if scrape_type is FaqScrapeType.ASK:
                    await self.scrape_questions(page, query, collector)
                else:
                    await self.scrape_related(page, query, collector)

    async def scrape_questions(
        self, page: Page, query: str, collector: ScrapeResultCollector
    ) -> None:
        try:
            await page.wait_for_selector(
                QUESTION_SELECTOR, timeout=QUESTIONS_TIMEOUT_MS
            )
        except PlaywrightTimeoutError:
            self.reporter.status(f'[info] No "People also ask" for: {query}')
            return

        loop = PaginationLoop(
            QuestionListSurface(page, query, self),
            self.token,
            self.reporter,
            max_records=self.options.max_questions,
            timings=self.timings,
            label=query,
            on_record=collector.add,
        )
        await loop.run()

    async def scrape_related(
        self, page: Page, query: str, collector: ScrapeResultCollector
    ) -> None:
        links = await page.query_selector_all(RELATED_SELECTOR)
        found = 0
        for link in links:
            text = " ".join((await link.inner_text()).split())
            if not text:
                continue
            collector.add(
                FaqRecord(kind="related", question=text, search_query=query)
            )
            found += 1
        self.reporter.status(f"[info] {found} related searches for: {query}")
