"""Resolution of raw user input into Targets.

Raw input is a single comma-separated string. For most modes every entry is
one target. Backup mode additionally accepts a single sitemap URL (an entry
ending in ``.xml``), which is expanded recursively:

- a ``sitemapindex`` document recurses into every ``<sitemap><loc>``
- a ``urlset`` document yields one Target per ``<url><loc>``, tagged with
  the sitemap it was found in
- any other document yields nothing

Only a failure of the root sitemap aborts resolution. A failing child of a
sitemap index is reported and its siblings are kept.
"""

from __future__ import annotations

import logging
import re

import httpx
from lxml import etree

from trawl.common.cancellation import CancellationToken
from trawl.common.exceptions import InputError, ResolutionError
from trawl.common.status import StatusReporter
from trawl.data_types import Target, TargetKind

logger = logging.getLogger(__name__)

SITEMAP_TIMEOUT = 30.0

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def split_targets(raw: str) -> list[str]:
    """Split comma-separated input into trimmed, non-empty entries.

    Order is preserved and duplicates are kept.

    Example::

        >>> split_targets("a, b ,,c")
        ['a', 'b', 'c']
    """
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` to URLs given without a scheme."""
    return url if _SCHEME_RE.match(url) else f"https://{url}"


def is_sitemap_input(raw: str) -> bool:
    stripped = raw.strip()
    return stripped.lower().endswith(".xml") and "," not in stripped


def _local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


class TargetResolver:
    """Turns raw input into the ordered list of Targets of a batch.

    Args:
        reporter: Receives one status line per sitemap fetched or failed.
        client: HTTP client used for sitemap fetches. When None, a client is
            created per resolve() call.
        timeout: Sitemap fetch timeout in seconds.
    """

    def __init__(
        self,
        reporter: StatusReporter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = SITEMAP_TIMEOUT,
    ) -> None:
        self.reporter = reporter or StatusReporter()
        self._client = client
        self.timeout = timeout

    async def resolve(
        self,
        raw: str,
        kind: TargetKind,
        token: CancellationToken | None = None,
    ) -> list[Target]:
        """Resolve raw input into Targets.

        Args:
            raw: Comma-separated input.
            kind: The kind the running mode expects. SITEMAP_ENTRY enables
                sitemap expansion; plain entries then become URL targets.
            token: Checked before each child sitemap fetch.

        Returns:
            Targets in input (or sitemap document) order.

        Raises:
            InputError: If the input holds no entries.
            ResolutionError: If the root sitemap cannot be fetched or parsed.
        """
        entries = split_targets(raw or "")
        if not entries:
            raise InputError("No targets given")

        if kind is TargetKind.SITEMAP_ENTRY:
            if len(entries) == 1 and is_sitemap_input(entries[0]):
                return await self._expand_root(entries[0], token)
            return [
                Target(TargetKind.URL, ensure_scheme(entry))
                for entry in entries
            ]
        if kind is TargetKind.URL:
            return [Target(kind, ensure_scheme(entry)) for entry in entries]
        return [Target(kind, entry) for entry in entries]

    async def _expand_root(
        self, sitemap_url: str, token: CancellationToken | None
    ) -> list[Target]:
        if self._client is not None:
            return await self._expand(
                self._client, sitemap_url, set(), token, is_root=True
            )
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True
        ) as client:
            return await self._expand(
                client, sitemap_url, set(), token, is_root=True
            )

    async def _expand(
        self,
        client: httpx.AsyncClient,
        sitemap_url: str,
        visited: set[str],
        token: CancellationToken | None,
        is_root: bool = False,
    ) -> list[Target]:
        visited.add(sitemap_url)
        root = await self._fetch_document(client, sitemap_url)
        name = _local_name(root)

        if name == "sitemapindex":
            targets: list[Target] = []
            for loc in root.iterfind("{*}sitemap/{*}loc"):
                child_url = (loc.text or "").strip()
                if not child_url or child_url in visited:
                    continue
                if token is not None and token.is_stop_requested():
                    self.reporter.status(
                        "[STOP] Sitemap expansion interrupted"
                    )
                    break
                self.reporter.status(f"[info] Fetching sub-sitemap: {child_url}")
                try:
                    targets.extend(
                        await self._expand(client, child_url, visited, token)
                    )
                except ResolutionError as e:
                    self.reporter.status(
                        f"[error] Skipping sitemap {child_url}: {e.reason}"
                    )
            return targets

        if name == "urlset":
            targets = []
            for loc in root.iterfind("{*}url/{*}loc"):
                page_url = (loc.text or "").strip()
                if page_url:
                    targets.append(
                        Target(
                            TargetKind.SITEMAP_ENTRY,
                            page_url,
                            source_sitemap=sitemap_url,
                        )
                    )
            if is_root:
                self.reporter.status(
                    f"[info] Found {len(targets)} URLs in {sitemap_url}"
                )
            return targets

        logger.info(f"Sitemap {sitemap_url} has unexpected root <{name}>")
        return []

    async def _fetch_document(
        self, client: httpx.AsyncClient, sitemap_url: str
    ) -> etree._Element:
        try:
            response = await client.get(sitemap_url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ResolutionError(sitemap_url, str(e) or type(e).__name__) from e

        parser = etree.XMLParser(
            resolve_entities=False, no_network=True, recover=False
        )
        try:
            return etree.fromstring(response.content, parser=parser)
        except etree.XMLSyntaxError as e:
            raise ResolutionError(sitemap_url, f"invalid XML: {e}") from e
