"""Route modules of the web API.

- runs: start, stop and inspect batches; confirm CAPTCHAs
- websocket: status events via WebSocket
"""

from trawl.web.routes.runs import router as runs_router
from trawl.web.websocket import router as websocket_router

__all__ = [
    "runs_router",
    "websocket_router",
]
