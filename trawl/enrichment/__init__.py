"""Best-effort external lookups used to enrich records.

None of these may block a batch: callers report failures as status lines
and leave the enriched fields empty.
"""

from trawl.enrichment.lighthouse import (
    LighthouseFailed,
    LighthouseUnavailable,
    run_lighthouse,
)
from trawl.enrichment.vies import VatInfo, ViesClient
from trawl.enrichment.wayback import fetch_wayback_history

__all__ = [
    "LighthouseFailed",
    "LighthouseUnavailable",
    "VatInfo",
    "ViesClient",
    "fetch_wayback_history",
    "run_lighthouse",
]
