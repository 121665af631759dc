"""Tests for the HTML analysis helpers."""

from trawl.common.html_audit import (
    H1_ADVICE,
    audit_page,
    detect_analytics,
    detect_cms,
    detect_cookie_banners,
    extract_email,
    extract_vat_id,
    media_urls,
    sanitize_filename,
    visible_text,
)

PAGE = """<html>
<head>
  <title>Pizzeria Roma</title>
  <meta name="description" content="Best pizza in town">
  <meta name="robots" content="index,follow">
  <meta property="og:title" content="Pizzeria">
  <meta name="twitter:card" content="summary">
  <script type="application/ld+json">{"@type": "Restaurant"}</script>
  <script type="application/ld+json">{broken</script>
  <script async src="https://www.googletagmanager.com/gtm.js?id=X"></script>
  <link rel="stylesheet" href="/wp-content/themes/x.css">
</head>
<body>
  <h2>Menu</h2>
  <h1>Pizzeria Roma</h1>
  <p>Write to info@pizzeria.it - VAT 01234567890</p>
  <img src="/img/a.png" alt="oven">
  <img src="data:image/png;base64,AAAA">
  <video><source src="clip.mp4"></video>
  <a href="/menu">Menu</a>
  <a href="https://www.pizzeria.it/menu">Menu again</a>
  <a href="https://maps.example.com/place">Map</a>
  <a href="mailto:info@pizzeria.it">Mail</a>
  <style>.hidden { color: red }</style>
</body>
</html>"""


class TestText:
    """Tests for text extraction."""

    def test_visible_text_skips_scripts_and_styles(self) -> None:
        text = visible_text(PAGE)
        assert "Write to info@pizzeria.it" in text
        assert "color: red" not in text
        assert "Restaurant" not in text

    def test_email_and_vat(self) -> None:
        assert extract_email(PAGE) == "info@pizzeria.it"
        assert extract_vat_id(PAGE) == "01234567890"
        assert extract_email("<p>no contacts</p>") is None

    def test_empty_document(self) -> None:
        assert visible_text("") == ""

    def test_sanitize_filename(self) -> None:
        """Unsafe characters shall be dropped and whitespace joined by _."""
        assert sanitize_filename("pizza roma, milano!") == "pizza_roma_milano"
        assert sanitize_filename("a" * 150) == "a" * 100
        assert sanitize_filename("") == ""


class TestMedia:
    def test_media_urls_are_absolute(self) -> None:
        """Image and video sources shall be resolved; data URIs skipped."""
        assert media_urls(PAGE, "https://www.pizzeria.it/home/") == [
            "https://www.pizzeria.it/img/a.png",
            "https://www.pizzeria.it/home/clip.mp4",
        ]


class TestDetection:
    def test_analytics(self) -> None:
        assert detect_analytics(PAGE) == ["GA4"]
        assert detect_analytics("<html></html>") == []

    def test_cookie_banners(self) -> None:
        html = '<script src="https://cdn.iubenda.com/cs.js"></script>'
        assert detect_cookie_banners(html) == ["Iubenda"]

    def test_cms_later_match_wins(self) -> None:
        assert detect_cms(PAGE) == "WordPress"
        assert detect_cms("wp-content woocommerce") == "WooCommerce"
        assert detect_cms("<p>static</p>") == "NOT DETECTED"


class TestAudit:
    """Tests for the SEO audit of a page."""

    def test_audit_fields(self) -> None:
        record = audit_page(PAGE, "https://www.pizzeria.it/", status=200)

        assert record.meta_title == "Pizzeria Roma"
        assert record.description == "Best pizza in town"
        assert record.keywords == "NO KEYWORDS"
        assert record.robots == "index,follow"
        assert record.images == [
            "/img/a.png [alt: oven]",
            "data:image/png;base64,AAAA [alt: ]",
        ]
        assert record.structured_data == ['{"@type": "Restaurant"}']
        assert record.social_tags == {
            "og:title": "Pizzeria",
            "twitter:card": "summary",
        }
        assert record.analytics == ["GA4"]
        assert record.cms == "WordPress"

    def test_links_are_split_by_origin(self) -> None:
        """Same-origin links shall be internal; other schemes are ignored."""
        record = audit_page(PAGE, "https://www.pizzeria.it/")
        assert record.internal_links == ["https://www.pizzeria.it/menu"]
        assert record.external_links == ["https://maps.example.com/place"]

    def test_heading_advice(self) -> None:
        """A page not opening with an H1 shall get the advice entry."""
        record = audit_page(PAGE, "https://www.pizzeria.it/")
        assert record.headings[0] == 'H2 "Menu" (4 chars)'
        assert record.headings[-1] == H1_ADVICE

    def test_browser_title_wins(self) -> None:
        record = audit_page(PAGE, "https://x.it/", title="Rendered title")
        assert record.meta_title == "Rendered title"

    def test_unparseable_page(self) -> None:
        record = audit_page("", "https://x.it/", status=500, title="t")
        assert record.status_http == 500
        assert record.description == "NO DESCRIPTION"
