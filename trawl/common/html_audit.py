"""HTML analysis helpers.

Pure functions over raw HTML, used by Maps enrichment (contact details from
a listing's website) and Backup (SEO audit, visible text, media discovery).
Nothing here touches the network or the browser.
"""

from __future__ import annotations

import json
import re
from urllib.parse import urljoin, urlparse

from lxml import etree
from lxml import html as lxml_html
from lxml.html import HtmlElement

from trawl.common.records import BackupRecord

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
VAT_RE = re.compile(r"\b\d{11}\b")

_NON_TEXT_TAGS = ("script", "style", "noscript", "template")
_FILENAME_DROP_RE = re.compile(r"[^a-z0-9_\- ]", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_filename(value: str, max_length: int = 100) -> str:
    """Make a string safe for use as a file or folder name.

    Keeps ASCII letters, digits, ``_``, ``-`` and spaces, turns runs of
    whitespace into ``_`` and truncates to ``max_length`` characters.

    Example::

        >>> sanitize_filename("pizza roma, milano!")
        'pizza_roma_milano'
    """
    kept = _FILENAME_DROP_RE.sub("", value or "")
    return _WHITESPACE_RE.sub("_", kept)[:max_length]


def parse_html(html: str) -> HtmlElement | None:
    if not html or not html.strip():
        return None
    try:
        return lxml_html.document_fromstring(html)
    except ValueError:
        # str input with an XML encoding declaration
        return lxml_html.document_fromstring(html.encode("utf-8"))
    except etree.ParserError:
        return None


def _body(tree: HtmlElement) -> HtmlElement:
    bodies = tree.xpath("//body")
    return bodies[0] if bodies else tree


def visible_text(html: str) -> str:
    """Text of the page body without scripts and styles, whitespace collapsed."""
    tree = parse_html(html)
    if tree is None:
        return ""
    body = _body(tree)
    for element in body.xpath(
        " | ".join(f".//{tag}" for tag in _NON_TEXT_TAGS)
    ):
        element.drop_tree()
    return _WHITESPACE_RE.sub(" ", body.text_content()).strip()


def _first_match(pattern: re.Pattern[str], html: str) -> str | None:
    text = visible_text(html)
    match = pattern.search(text)
    return match.group(0) if match else None


def extract_email(html: str) -> str | None:
    """First email address in the visible text of a page."""
    return _first_match(EMAIL_RE, html)


def extract_vat_id(html: str) -> str | None:
    """First 11-digit number (Italian VAT id) in the visible text of a page."""
    return _first_match(VAT_RE, html)


def media_urls(html: str, page_url: str) -> list[str]:
    """Absolute URLs of every image and video source on a page.

    Inline ``data:`` URIs are skipped. Order follows the document, images
    first.
    """
    tree = parse_html(html)
    if tree is None:
        return []
    sources = tree.xpath("//img/@src") + tree.xpath(
        "//video/@src | //video/source/@src"
    )
    urls = []
    for src in sources:
        src = src.strip()
        if not src or src.startswith("data:"):
            continue
        urls.append(urljoin(page_url, src))
    return urls


# =============================================================================
# SEO audit
# =============================================================================

_ANALYTICS_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("GA4", ("googletagmanager.com/gtm.js", "gtag(")),
    ("Universal Analytics", ("google-analytics.com/analytics.js", "ga('")),
    ("Clarity", ("clarity.ms",)),
    ("Matomo", ("matomo.js", "piwik.js", "matomo", "_mtm")),
    ("Hotjar", ("hotjar.com", "hjsv_")),
    ("Facebook Pixel", ("connect.facebook.net", "fbq(")),
]

_COOKIE_BANNER_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("CookieYes", ("cookieyes.com", 'id="cookieyes"')),
    ("CookieBot", ("consent.cookiebot.com", "cookieconsent")),
    ("Iubenda", ("cdn.iubenda.com", "iubenda")),
]

H1_ADVICE = "INFO: the first heading should be an H1"


def detect_analytics(html: str) -> list[str]:
    content = html.lower()
    return [
        tool
        for tool, markers in _ANALYTICS_MARKERS
        if any(marker in content for marker in markers)
    ]


def detect_cookie_banners(html: str) -> list[str]:
    content = html.lower()
    return [
        banner
        for banner, markers in _COOKIE_BANNER_MARKERS
        if any(marker in content for marker in markers)
    ]


def detect_cms(html: str) -> str:
    """Best guess at the CMS behind a page. Later matches win."""
    content = html.lower()
    cms = "NOT DETECTED"
    if "wp-content" in content or "wp-includes" in content:
        cms = "WordPress"
    if "woocommerce" in content:
        cms = "WooCommerce"
    if "prestashop" in content or "/modules/" in content:
        cms = "PrestaShop"
    return cms


def _meta_content(tree: HtmlElement, name: str) -> str | None:
    values = tree.xpath(f"//meta[@name='{name}']/@content")
    return values[0] if values else None


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def audit_page(
    html: str, url: str, status: int = 0, title: str | None = None
) -> BackupRecord:
    """Build the SEO audit of one rendered page.

    Args:
        html: The rendered page content.
        url: The URL the page was loaded from.
        status: HTTP status of the main document response.
        title: Document title as reported by the browser. Read from the
            HTML when not given.

    Returns:
        A BackupRecord with every audit field filled and no artifact paths.
    """
    tree = parse_html(html)
    if tree is None:
        return BackupRecord(url=url, status_http=status, meta_title=title or "")

    if title is None:
        titles = tree.xpath("//title/text()")
        title = titles[0].strip() if titles else ""

    headings = []
    for element in tree.xpath("//h1 | //h2 | //h3"):
        text = element.text_content().strip()
        headings.append(f'{element.tag.upper()} "{text}" ({len(text)} chars)')
    if headings and not headings[0].startswith("H1"):
        headings.append(H1_ADVICE)

    images = [
        f"{img.get('src', '')} [alt: {img.get('alt', '')}]"
        for img in tree.xpath("//img")
    ]

    origin = urlparse(url)
    internal: list[str] = []
    external: list[str] = []
    for href in tree.xpath("//a/@href"):
        href = href.strip()
        if not href:
            continue
        link = urljoin(f"{origin.scheme}://{origin.netloc}/", href)
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https"):
            continue
        if (parsed.scheme, parsed.netloc) == (origin.scheme, origin.netloc):
            internal.append(link)
        else:
            external.append(link)

    structured = []
    for script in tree.xpath("//script[@type='application/ld+json']"):
        try:
            structured.append(json.dumps(json.loads(script.text or "{}")))
        except json.JSONDecodeError:
            continue

    social: dict[str, str] = {}
    for meta in tree.xpath(
        "//meta[starts-with(@property, 'og:') or starts-with(@name, 'og:')"
        " or starts-with(@property, 'twitter:')"
        " or starts-with(@name, 'twitter:')]"
    ):
        prop = meta.get("property") or meta.get("name")
        content = meta.get("content")
        if prop and content:
            social[prop] = content

    return BackupRecord(
        url=url,
        status_http=status,
        meta_title=title,
        description=_meta_content(tree, "description") or "NO DESCRIPTION",
        keywords=_meta_content(tree, "keywords") or "NO KEYWORDS",
        robots=_meta_content(tree, "robots") or "NO ROBOTS",
        headings=headings,
        images=images,
        internal_links=_unique(internal),
        external_links=_unique(external),
        structured_data=structured,
        social_tags=social,
        analytics=detect_analytics(html),
        cookie_banners=detect_cookie_banners(html),
        cms=detect_cms(html),
    )
