"""Client for the EU VIES VAT registry.

Maps enrichment looks the VAT id found on a listing's website up in VIES to
fill in the registered company name. The registry throttles aggressive
callers, so lookups are rate limited to one call every two seconds.
"""

from __future__ import annotations

import asyncio
import logging
import re

import httpx
from lxml import etree
from pydantic import BaseModel
from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate

logger = logging.getLogger(__name__)

VIES_URL = (
    "http://ec.europa.eu/taxation_customs/vies/services/checkVatService"
)
VIES_TIMEOUT = 15.0
VIES_RATE = Rate(1, Duration.SECOND * 2)

_SOAP_ENVELOPE = """<soapenv:Envelope \
xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" \
xmlns:urn="urn:ec.europa.eu:taxud:vies:services:checkVat:types">
  <soapenv:Header/>
  <soapenv:Body>
    <urn:checkVat>
      <urn:countryCode>{country}</urn:countryCode>
      <urn:vatNumber>{number}</urn:vatNumber>
    </urn:checkVat>
  </soapenv:Body>
</soapenv:Envelope>"""


class VatInfo(BaseModel):
    """What VIES knows about a VAT id."""

    country_code: str
    vat_number: str
    valid: bool
    name: str | None = None
    address: str | None = None


def build_check_vat_request(vat_number: str, country: str = "IT") -> str:
    return _SOAP_ENVELOPE.format(country=country, number=vat_number)


def parse_check_vat_response(content: bytes) -> VatInfo | None:
    """Parse a checkVat SOAP response.

    Returns:
        The parsed answer, or None when the body holds no checkVatResponse
        (SOAP faults, throttling pages).
    """
    try:
        root = etree.fromstring(
            content, parser=etree.XMLParser(resolve_entities=False)
        )
    except etree.XMLSyntaxError:
        return None
    found = root.find(".//{*}checkVatResponse")
    if found is None:
        return None

    def text(tag: str) -> str | None:
        value = found.findtext(f"{{*}}{tag}")
        value = value.strip() if value else None
        return value if value and value != "---" else None

    address = text("address")
    return VatInfo(
        country_code=text("countryCode") or "",
        vat_number=text("vatNumber") or "",
        valid=text("valid") == "true",
        name=text("name"),
        address=address.replace("\n", ", ") if address else None,
    )


class ViesClient:
    """Rate-limited VIES lookups.

    Args:
        client: HTTP client to post SOAP requests with.
        limiter: Shared limiter. Defaults to one call every two seconds.
        url: Service endpoint.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: Limiter | None = None,
        url: str = VIES_URL,
    ) -> None:
        self.client = client
        self.limiter = limiter or Limiter(
            InMemoryBucket([VIES_RATE]), raise_when_fail=False
        )
        self.url = url

    async def _acquire(self) -> None:
        while not self.limiter.try_acquire("vies"):
            await asyncio.sleep(0.1)

    async def check_vat(
        self, vat_id: str, country: str = "IT"
    ) -> VatInfo | None:
        """Look a VAT id up.

        Args:
            vat_id: The number, punctuation is ignored. Must be 11 digits.
            country: Two-letter member state code.

        Returns:
            The registry answer, or None for malformed ids and empty answers.

        Raises:
            httpx.HTTPError: On transport failures and error statuses.
        """
        number = re.sub(r"\D", "", vat_id)
        if len(number) != 11:
            return None

        await self._acquire()
        logger.debug(f"VIES lookup for {country}{number}")
        response = await self.client.post(
            self.url,
            content=build_check_vat_request(number, country),
            headers={
                "Content-Type": "text/xml;charset=UTF-8",
                "SOAPAction": "",
            },
            timeout=VIES_TIMEOUT,
        )
        response.raise_for_status()
        return parse_check_vat_response(response.content)
