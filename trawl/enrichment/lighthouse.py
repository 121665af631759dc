"""Lighthouse scores through the ``lighthouse`` command-line tool.

The CLI must be installed separately (``npm install -g lighthouse``). It is
run headless with JSON output on stdout and only the four category scores
are kept.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil

from trawl.common.records import LighthouseScores

logger = logging.getLogger(__name__)

LIGHTHOUSE_TIMEOUT = 180.0
CATEGORIES = ("performance", "accessibility", "seo", "best-practices")


class LighthouseUnavailable(Exception):
    """Raised when the lighthouse binary is not on PATH."""


class LighthouseFailed(Exception):
    """Raised when a lighthouse run fails or prints unusable output."""


def lighthouse_command(url: str, binary: str = "lighthouse") -> list[str]:
    return [
        binary,
        url,
        "--output=json",
        "--output-path=stdout",
        "--quiet",
        "--chrome-flags=--headless",
        "--only-categories=" + ",".join(CATEGORIES),
    ]


def parse_lighthouse_report(output: str) -> LighthouseScores:
    """Pull the category scores (0-100) out of a Lighthouse JSON report."""
    try:
        categories = json.loads(output)["categories"]
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise LighthouseFailed(f"unreadable report: {e}") from e

    def score(name: str) -> float:
        value = (categories.get(name) or {}).get("score")
        return round((value or 0) * 100, 1)

    return LighthouseScores(
        performance=score("performance"),
        accessibility=score("accessibility"),
        seo=score("seo"),
        best_practices=score("best-practices"),
    )


async def run_lighthouse(
    url: str,
    binary: str = "lighthouse",
    timeout: float = LIGHTHOUSE_TIMEOUT,
) -> LighthouseScores:
    """Audit ``url`` and return its category scores.

    Raises:
        LighthouseUnavailable: If the binary cannot be found.
        LighthouseFailed: On non-zero exit, timeout or bad output.
    """
    executable = shutil.which(binary)
    if executable is None:
        raise LighthouseUnavailable(f"{binary} not found on PATH")

    command = lighthouse_command(url, executable)
    logger.debug(f"Running {' '.join(command)}")
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise LighthouseFailed(f"timed out after {timeout}s") from e

    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip().splitlines()
        raise LighthouseFailed(
            f"exit code {process.returncode}: {detail[-1] if detail else ''}"
        )
    return parse_lighthouse_report(stdout.decode(errors="replace"))
