"""FastAPI application exposing the scraping engine.

This module provides:
- create_app(): the application factory
- lifespan: creates the engine and the status event pump, and stops a
  running batch on shutdown
- get_engine(): dependency returning the application's engine
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from trawl.config import Settings
from trawl.driver.engine import ScrapingEngine
from trawl.web.websocket import WebSocketManager, pump_events

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI app.

    Handles startup (engine, event pump) and shutdown (stop the batch).
    """
    settings: Settings = app.state.settings or Settings.load()
    app.state.settings = settings
    if app.state.engine is None:
        app.state.engine = ScrapingEngine(settings.base_output_folder)
    engine: ScrapingEngine = app.state.engine
    app.state.task = None

    pump = asyncio.create_task(
        pump_events(engine.reporter, app.state.ws_manager)
    )
    logger.info(f"Output folder: {settings.base_output_folder}")

    yield

    task: asyncio.Task | None = app.state.task
    if task is not None and not task.done():
        engine.stop()
        try:
            await asyncio.wait_for(task, timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Batch did not stop gracefully, cancelling")
            task.cancel()
        except Exception as e:
            logger.warning(f"Batch ended with an error during shutdown: {e}")
    pump.cancel()


def get_engine(request: Request) -> ScrapingEngine:
    """Get the application's engine.

    Raises:
        RuntimeError: If the application has not started.
    """
    engine = request.app.state.engine
    if engine is None:
        raise RuntimeError("Engine not initialized")
    return engine


def create_app(
    settings: Settings | None = None, engine: ScrapingEngine | None = None
) -> FastAPI:
    """Create a new FastAPI application.

    Args:
        settings: Stored settings. Loaded from the user folder when None.
        engine: Engine to expose. Created from the settings when None.

    Returns:
        Configured FastAPI application.
    """
    from trawl.web.routes import runs_router, websocket_router

    app = FastAPI(
        title="Trawl",
        description="Run and monitor scraping batches",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.task = None
    app.state.ws_manager = WebSocketManager()

    app.include_router(runs_router)
    app.include_router(websocket_router)
    return app
