"""
Browser-driven scraping orchestration engine.

This package turns a comma-separated list of targets (search terms, domains,
URLs or a sitemap) into browser-driven extraction batches for four modes
(maps, dns, faq, backup), with cooperative cancellation, CAPTCHA
suspend/resume, pagination, batch-level deduplication and status reporting.

See DESIGN.md for how the pieces fit together.
"""
