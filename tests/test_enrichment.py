"""Tests for VIES, Wayback and Lighthouse enrichment."""

from __future__ import annotations

import json

import httpx
import pytest

from trawl.enrichment.lighthouse import (
    LighthouseFailed,
    LighthouseUnavailable,
    lighthouse_command,
    parse_lighthouse_report,
    run_lighthouse,
)
from trawl.enrichment.vies import (
    ViesClient,
    build_check_vat_request,
    parse_check_vat_response,
)
from trawl.enrichment.wayback import fetch_wayback_history, summarize_cdx
from tests.utils import mock_client

VIES_VALID = b"""<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
<env:Body>
<ns2:checkVatResponse xmlns:ns2="urn:ec.europa.eu:taxud:vies:services:checkVat:types">
<ns2:countryCode>IT</ns2:countryCode>
<ns2:vatNumber>01234567890</ns2:vatNumber>
<ns2:valid>true</ns2:valid>
<ns2:name>ACME SRL</ns2:name>
<ns2:address>VIA ROMA 1
00100 ROMA RM</ns2:address>
</ns2:checkVatResponse>
</env:Body>
</env:Envelope>"""

VIES_INVALID = VIES_VALID.replace(b"true", b"false").replace(
    b"ACME SRL", b"---"
)

SOAP_FAULT = b"""<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">
<env:Body><env:Fault><faultstring>MS_MAX_CONCURRENT_REQ</faultstring></env:Fault></env:Body>
</env:Envelope>"""


class TestVies:
    """Tests for the VIES SOAP client."""

    def test_request_envelope(self) -> None:
        body = build_check_vat_request("01234567890")
        assert "<urn:countryCode>IT</urn:countryCode>" in body
        assert "<urn:vatNumber>01234567890</urn:vatNumber>" in body

    def test_parse_valid_answer(self) -> None:
        info = parse_check_vat_response(VIES_VALID)
        assert info is not None
        assert info.valid
        assert info.name == "ACME SRL"
        assert info.address == "VIA ROMA 1, 00100 ROMA RM"

    def test_parse_invalid_answer(self) -> None:
        """Placeholder values shall read as missing."""
        info = parse_check_vat_response(VIES_INVALID)
        assert info is not None
        assert not info.valid
        assert info.name is None

    def test_parse_fault_and_garbage(self) -> None:
        assert parse_check_vat_response(SOAP_FAULT) is None
        assert parse_check_vat_response(b"<html>busy") is None

    @pytest.mark.asyncio
    async def test_check_vat(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=VIES_VALID)

        async with mock_client(handler) as client:
            info = await ViesClient(client).check_vat("IT 012-345-678-90")

        assert info is not None and info.name == "ACME SRL"
        assert b"<urn:vatNumber>01234567890</urn:vatNumber>" in requests[0].content

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_sent(self) -> None:
        """Ids that are not 11 digits shall not reach the service."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            assert await ViesClient(client).check_vat("12345") is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        async with mock_client(lambda r: httpx.Response(503)) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await ViesClient(client).check_vat("01234567890")


class TestWayback:
    """Tests for the CDX summary."""

    def test_summary(self) -> None:
        rows = [
            ["urlkey", "timestamp"],
            ["k", "20050301000000"],
            ["k", "20120101000000"],
            ["k", "20240229120000"],
        ]
        history = summarize_cdx(rows)
        assert history.snapshots == 3
        assert history.first_date == "2005-03-01"
        assert history.last_date == "2024-02-29"
        assert history.years_online == 19

    def test_header_only(self) -> None:
        assert summarize_cdx([["urlkey", "timestamp"]]).snapshots == 0

    @pytest.mark.asyncio
    async def test_fetch_sends_domain(self) -> None:
        seen: list[httpx.URL] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, content=b"")

        async with mock_client(handler) as client:
            history = await fetch_wayback_history(client, "https://x.it")

        assert history.snapshots == 0
        assert seen[0].params["url"] == "https://x.it"
        assert seen[0].params["output"] == "json"


class TestLighthouse:
    """Tests for Lighthouse report handling."""

    def test_command(self) -> None:
        command = lighthouse_command("https://x.it", "/usr/bin/lighthouse")
        assert command[:2] == ["/usr/bin/lighthouse", "https://x.it"]
        assert "--output=json" in command
        assert (
            "--only-categories=performance,accessibility,seo,best-practices"
            in command
        )

    def test_parse_scores(self) -> None:
        report = {
            "categories": {
                "performance": {"score": 0.91},
                "accessibility": {"score": 0.8},
                "seo": {"score": 1},
                "best-practices": {"score": None},
            }
        }
        scores = parse_lighthouse_report(json.dumps(report))
        assert scores.performance == 91.0
        assert scores.seo == 100.0
        assert scores.best_practices == 0.0

    def test_unreadable_report(self) -> None:
        with pytest.raises(LighthouseFailed):
            parse_lighthouse_report("Lighthouse crashed")

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        with pytest.raises(LighthouseUnavailable):
            await run_lighthouse("https://x.it", "trawl-missing-lighthouse")
