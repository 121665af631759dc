"""DNS mode: DNS, TLS and reputation metadata per domain.

Domains fan out concurrently. Each domain task fills its own DnsRecord slot
and the slots are collected in input order once every task has finished, so
the report lists one record per domain in the order the domains were given.

Per domain:

1. DNS lookups for the requested record types (concurrent)
2. an HTTPS probe: HTTP status and certificate status
3. optionally the A record of ``mail.<domain>``
4. optionally the Wayback Machine capture history
5. optionally the Lighthouse category scores

No browser is used. A stop request is honoured before each domain and
between lookup steps; a domain interrupted half-way is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import ssl

import dns.asyncresolver
import dns.exception
import httpx

from trawl.common.dedup import ScrapeResultCollector
from trawl.common.records import DnsRecord
from trawl.data_types import ScrapeMode, Target
from trawl.driver.base_driver import BaseModeDriver
from trawl.driver.persistence import dns_filename
from trawl.enrichment import (
    LighthouseFailed,
    LighthouseUnavailable,
    fetch_wayback_history,
    run_lighthouse,
)

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10.0
DNS_LIFETIME = 10.0

SSL_VALID = "VALID"
SSL_INVALID = "INVALID"
SSL_NONE = "NO SSL"
NO_RESPONSE = "NO RESPONSE"


def _is_certificate_error(exc: BaseException) -> bool:
    """True if a TLS verification failure is anywhere in the cause chain."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        if "CERTIFICATE_VERIFY_FAILED" in str(current):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


async def probe_https(
    client: httpx.AsyncClient, domain: str, timeout: float = PROBE_TIMEOUT
) -> tuple[int | str | None, str]:
    """GET ``https://<domain>`` and classify the outcome.

    Any HTTP answer, error statuses included, means the certificate was
    accepted.

    Returns:
        ``(http_status, ssl_status)``. The status is "NO RESPONSE" when the
        host could not be reached; ssl_status is VALID, INVALID or NO SSL.
    """
    try:
        response = await client.get(f"https://{domain}", timeout=timeout)
    except httpx.TimeoutException:
        return NO_RESPONSE, SSL_NONE
    except httpx.ConnectError as e:
        if _is_certificate_error(e):
            return None, SSL_INVALID
        return NO_RESPONSE, SSL_NONE
    except httpx.HTTPError as e:
        logger.debug(f"HTTPS probe of {domain} failed: {e}")
        return None, SSL_NONE
    return response.status_code, SSL_VALID


class DnsDriver(BaseModeDriver):
    """Collects DNS metadata for every domain of the batch.

    Args:
        resolver: Async DNS resolver. Defaults to the system configuration.
        lighthouse_binary: Name or path of the lighthouse CLI.
        **kwargs: Passed to BaseModeDriver.
    """

    mode = ScrapeMode.DNS
    uses_browser = False

    def __init__(
        self,
        *args,
        resolver: dns.asyncresolver.Resolver | None = None,
        lighthouse_binary: str = "lighthouse",
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._resolver = resolver
        self.lighthouse_binary = lighthouse_binary

    @property
    def resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
        return self._resolver

    def output_filename(self, raw_targets: str, targets: list[Target]) -> str:
        return dns_filename(raw_targets)

    async def process_targets(
        self, targets: list[Target], collector: ScrapeResultCollector
    ) -> None:
        """Fan out over all domains, then collect in input order."""
        slots = [ScrapeResultCollector() for _ in targets]
        await asyncio.gather(
            *(
                self._run_slot(target, slot)
                for target, slot in zip(targets, slots)
            )
        )
        for slot in slots:
            collector.extend(slot.records)

    async def _run_slot(
        self, target: Target, slot: ScrapeResultCollector
    ) -> None:
        if self.token.is_stop_requested():
            self.reporter.status(f"[STOP] Interrupted before starting: {target}")
            return
        await self.run_target(target, slot)

    async def process_target(
        self, target: Target, collector: ScrapeResultCollector
    ) -> None:
        domain = target.value
        options = self.options
        self.reporter.status(f"[search] DNS check for: {domain}")
        record = DnsRecord.for_domain(
            domain,
            options.dns_record_types,
            mail_a=options.check_mail_a,
            lighthouse=options.run_lighthouse,
            wayback=options.run_wayback,
        )

        answers = await asyncio.gather(
            *(self.lookup(domain, t) for t in options.dns_record_types)
        )
        for record_type, values in zip(options.dns_record_types, answers):
            record.set_dns(record_type, values)
        if self.token.is_stop_requested():
            return

        record.http_status, record.ssl_status = await probe_https(
            self.http, domain
        )

        if options.check_mail_a:
            mail_values = await self.lookup(f"mail.{domain}", "A")
            record.mail_a = DnsRecord.encode_answers(mail_values)
        if self.token.is_stop_requested():
            return

        if options.run_wayback:
            await self._wayback(record)
        if options.run_lighthouse and not self.token.is_stop_requested():
            await self._lighthouse(record)
        if self.token.is_stop_requested():
            return

        collector.add(record)

    async def lookup(self, name: str, record_type: str) -> list[str] | None:
        """Resolve one record type. None when there is no answer."""
        if self.token.is_stop_requested():
            return None
        try:
            answer = await self.resolver.resolve(
                name, record_type, lifetime=DNS_LIFETIME
            )
        except dns.exception.DNSException as e:
            reason = type(e).__name__
            self.reporter.status(
                f"[info] No {record_type} record for {name} ({reason})"
            )
            return None
        values = [rdata.to_text() for rdata in answer]
        self.reporter.status(
            f"[success] {record_type} found for {name}: {values}"
        )
        return values

    async def _wayback(self, record: DnsRecord) -> None:
        try:
            record.wayback = await fetch_wayback_history(
                self.http, f"https://{record.domain}"
            )
        except (httpx.HTTPError, ValueError) as e:
            self.reporter.status(
                f"[error] Wayback failed for {record.domain}: {e}"
            )

    async def _lighthouse(self, record: DnsRecord) -> None:
        try:
            record.lighthouse = await run_lighthouse(
                f"https://{record.domain}", self.lighthouse_binary
            )
        except LighthouseUnavailable as e:
            self.reporter.status(f"[info] Lighthouse skipped: {e}")
        except LighthouseFailed as e:
            self.reporter.status(
                f"[error] Lighthouse failed for {record.domain}: {e}"
            )
