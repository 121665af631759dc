"""Record models produced by the mode drivers.

Each mode produces one flat record variant with a fixed field set. The
variants share nothing but the ScrapeRecord interface:

- dedup_key(): the composite key batch-level deduplication uses
- to_row(): an ordered column -> scalar mapping for tabular persistence

They are only mixed together at the persistence boundary.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MISSING = "NONE"


class ScrapeRecord(BaseModel):
    """Base class for all record variants."""

    model_config = ConfigDict(extra="forbid")

    def dedup_key(self) -> tuple[Any, ...]:
        raise NotImplementedError

    def to_row(self) -> dict[str, Any]:
        raise NotImplementedError


class MapsRecord(ScrapeRecord):
    """One business listing from the local-services results.

    Fields the listing panel did not show hold "NONE". Enrichment fields
    stay None when the website could not be fetched or held no match.
    """

    name: str = MISSING
    address: str = MISSING
    phone: str = MISSING
    website: str = MISSING
    rating: str = MISSING
    rating_count: str = MISSING
    email: str | None = None
    vat_id: str | None = None
    company_name: str | None = None
    search_query: str = ""

    def dedup_key(self) -> tuple[str, str]:
        return (self.name, self.address)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()


class LighthouseScores(BaseModel):
    """Lighthouse category scores on a 0-100 scale."""

    performance: float
    accessibility: float
    seo: float
    best_practices: float

    @property
    def average(self) -> float:
        return (
            self.performance + self.accessibility + self.seo + self.best_practices
        ) / 4


class WaybackHistory(BaseModel):
    """Archive history of a domain in the Wayback Machine."""

    snapshots: int = 0
    first_date: str = ""
    last_date: str = ""
    years_online: int = 0


class DnsRecord(ScrapeRecord):
    """DNS, TLS and reputation metadata of one domain.

    ``dns`` is pre-populated with every requested record type, so a type
    that did not resolve still produces an (empty) column. Resolved values
    are stored as JSON-encoded lists.
    """

    domain: str
    dns: dict[str, str | None] = Field(default_factory=dict)
    mail_a_checked: bool = False
    mail_a: str | None = None
    http_status: int | str | None = None
    ssl_status: str = "NO SSL"
    lighthouse_checked: bool = False
    lighthouse: LighthouseScores | None = None
    wayback_checked: bool = False
    wayback: WaybackHistory | None = None

    @classmethod
    def for_domain(
        cls,
        domain: str,
        record_types: list[str],
        mail_a: bool = False,
        lighthouse: bool = False,
        wayback: bool = False,
    ) -> DnsRecord:
        return cls(
            domain=domain,
            dns={record_type: None for record_type in record_types},
            mail_a_checked=mail_a,
            lighthouse_checked=lighthouse,
            wayback_checked=wayback,
        )

    @staticmethod
    def encode_answers(answers: list[str] | None) -> str | None:
        return None if answers is None else json.dumps(answers)

    def set_dns(self, record_type: str, answers: list[str] | None) -> None:
        self.dns[record_type] = self.encode_answers(answers)

    def dedup_key(self) -> tuple[str]:
        return (self.domain,)

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {"domain": self.domain}
        row.update(self.dns)
        if self.mail_a_checked:
            row["mail_A"] = self.mail_a
        row["http_status"] = self.http_status
        row["ssl_status"] = self.ssl_status
        if self.lighthouse_checked:
            scores = self.lighthouse
            row["performance"] = scores.performance if scores else None
            row["accessibility"] = scores.accessibility if scores else None
            row["seo"] = scores.seo if scores else None
            row["best_practices"] = scores.best_practices if scores else None
            row["lighthouse_average"] = (
                round(scores.average, 1) if scores else None
            )
        if self.wayback_checked:
            history = self.wayback
            row["wayback_snapshots"] = history.snapshots if history else None
            row["wayback_first_date"] = history.first_date if history else None
            row["wayback_last_date"] = history.last_date if history else None
            row["wayback_years_online"] = (
                history.years_online if history else None
            )
        return row


class FaqRecord(ScrapeRecord):
    """One "People also ask" answer or one related search suggestion."""

    kind: Literal["ask", "related"] = "ask"
    question: str
    description: str = ""
    search_query: str = ""

    def dedup_key(self) -> tuple[str, str]:
        return (self.kind, self.question)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()


class BackupRecord(ScrapeRecord):
    """SEO audit of one backed-up page.

    The artifact paths are empty when the page was only audited for the
    global report.
    """

    url: str
    status_http: int = 0
    meta_title: str = ""
    description: str = "NO DESCRIPTION"
    keywords: str = "NO KEYWORDS"
    robots: str = "NO ROBOTS"
    headings: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    internal_links: list[str] = Field(default_factory=list)
    external_links: list[str] = Field(default_factory=list)
    structured_data: list[str] = Field(default_factory=list)
    social_tags: dict[str, str] = Field(default_factory=dict)
    analytics: list[str] = Field(default_factory=list)
    cookie_banners: list[str] = Field(default_factory=list)
    cms: str = "NOT DETECTED"
    sitemap: str | None = None
    csv_path: str = ""
    desktop_screenshot: str = ""
    mobile_screenshot: str = ""

    def dedup_key(self) -> tuple[str]:
        return (self.url,)

    def audit_row(self) -> dict[str, Any]:
        """Audit columns only, as written to the per-page CSV."""
        return {
            "Url": self.url,
            "Status HTTP": self.status_http,
            "Meta title [length]": f"{self.meta_title} [{len(self.meta_title)}]",
            "Description [length]": (
                f"{self.description} [{len(self.description)}]"
            ),
            "Keywords": self.keywords,
            "Robots": self.robots,
            "Headings [length and advice]": " | ".join(self.headings),
            "Images (src and alt)": " | ".join(self.images),
            "Internal links": " | ".join(self.internal_links),
            "External links": " | ".join(self.external_links),
            "Structured data (JSON-LD)": " | ".join(self.structured_data),
            "Social data (OG and Twitter)": json.dumps(self.social_tags),
            "Analytics tools": ", ".join(self.analytics) or "NONE",
            "Cookie banner": ", ".join(self.cookie_banners) or "NONE",
            "CMS detected": self.cms,
        }

    def to_row(self) -> dict[str, Any]:
        row = self.audit_row()
        row["CSV path"] = self.csv_path
        row["Desktop screenshot"] = self.desktop_screenshot
        row["Mobile screenshot"] = self.mobile_screenshot
        return row
