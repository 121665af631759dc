"""Per-batch option models.

BatchOptions collects every knob a batch can be started with. Fields that
do not apply to the running mode are ignored by its driver. The model is
validated once, before the batch starts; a validation failure is a fatal
InputError.

Example::

    from trawl.common.options import BatchOptions

    options = BatchOptions(headless=False, max_questions=20)
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from trawl.common.exceptions import InputError, MissingCredentialError
from trawl.data_types import SessionConfig

DNS_RECORD_TYPES = ("A", "NS", "MX", "TXT", "CNAME", "AAAA")


class FaqScrapeType(str, Enum):
    """Extraction modes available on a search results page."""

    ASK = "ask"
    RELATED = "related"


class BatchOptions(BaseModel):
    """Options for one batch run.

    Attributes:
        headless: Run the browser without a visible window.
        use_proxy: Route the browser through custom_proxy.
        custom_proxy: Proxy server address, required when use_proxy is set.
        output_folder: Overrides the mode folder under the base output folder.
        max_results: Maps: stop after this many listings per query.
        enrich_websites: Maps: fetch listing websites for email and VAT id.
        verify_vat: Maps: look VAT ids up in the VIES registry.
        dns_record_types: DNS: record types to resolve for every domain.
        check_mail_a: DNS: also resolve the A record of mail.<domain>.
        run_lighthouse: DNS: collect Lighthouse scores.
        run_wayback: DNS: collect Wayback Machine history.
        scrape_types: FAQ: which panels to extract.
        max_questions: FAQ: upper bound on "People also ask" questions.
        full_backup: Backup: screenshots and per-page artifacts.
        download_media: Backup: download images into media/.
        download_text: Backup: export visible page text as .docx.
        text_only: Backup: only export visible text, no audit.
    """

    headless: bool = True
    use_proxy: bool = False
    custom_proxy: str = ""
    output_folder: Path | None = None

    max_results: int | None = Field(default=None, ge=1)
    enrich_websites: bool = True
    verify_vat: bool = True

    dns_record_types: list[str] = Field(
        default_factory=lambda: list(DNS_RECORD_TYPES)
    )
    check_mail_a: bool = True
    run_lighthouse: bool = False
    run_wayback: bool = False

    scrape_types: list[FaqScrapeType] = Field(
        default_factory=lambda: [FaqScrapeType.ASK]
    )
    max_questions: int = Field(default=50, ge=1, le=100)

    full_backup: bool = True
    download_media: bool = False
    download_text: bool = False
    text_only: bool = False

    @field_validator("dns_record_types")
    @classmethod
    def _known_record_types(cls, value: list[str]) -> list[str]:
        normalized = [v.strip().upper() for v in value if v.strip()]
        unknown = [v for v in normalized if v not in DNS_RECORD_TYPES]
        if unknown:
            raise ValueError(f"unsupported DNS record types: {unknown}")
        return normalized

    @property
    def proxy(self) -> str | None:
        return self.custom_proxy if self.use_proxy else None

    def session_config(self) -> SessionConfig:
        """Browser launch configuration derived from these options.

        Raises:
            MissingCredentialError: If a proxy is requested but not set.
        """
        if self.use_proxy and not self.custom_proxy.strip():
            raise MissingCredentialError("custom_proxy")
        return SessionConfig(headless=self.headless, proxy=self.proxy)

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> BatchOptions:
        """Validate raw options (CLI flags, JSON bodies).

        Raises:
            InputError: If any option is invalid.
        """
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise InputError(
                f"Invalid batch options: {problems}",
                context={"error_count": e.error_count()},
            ) from e
