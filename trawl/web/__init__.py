"""Web API for the scraping engine.

This package provides a FastAPI-based interface to start and stop batches,
confirm CAPTCHAs and stream status events over a WebSocket.
"""

from trawl.web.app import create_app, get_engine, lifespan

__all__ = [
    "create_app",
    "get_engine",
    "lifespan",
]
