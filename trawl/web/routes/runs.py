"""REST API endpoints for batches.

This module provides endpoints for:
- Starting a batch
- Requesting a stop
- Confirming a solved CAPTCHA
- Reading the state of the current or last batch
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from trawl.common.exceptions import EngineBusyError, InputError
from trawl.data_types import ScrapeMode
from trawl.driver.engine import ScrapingEngine
from trawl.web.app import get_engine

router = APIRouter(prefix="/api/runs", tags=["runs"])

EngineDep = Annotated[ScrapingEngine, Depends(get_engine)]


class StartRunRequest(BaseModel):
    """Request model for starting a batch."""

    mode: ScrapeMode
    targets: str = Field(
        ..., description="Comma-separated queries, domains or URLs"
    )
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Batch options; stored settings fill what is missing",
    )


class ActionResponse(BaseModel):
    """Response model for stop and confirm actions."""

    accepted: bool


@router.get("")
async def get_current_run(engine: EngineDep) -> dict[str, Any]:
    """State of the current or last batch.

    Returns:
        ``{"running": bool, "run": {...} | None}``.
    """
    return {
        "running": engine.running,
        "run": engine.current.to_dict() if engine.current else None,
    }


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def start_run(
    body: StartRunRequest, request: Request, engine: EngineDep
) -> dict[str, Any]:
    """Start a batch in the background.

    Raises:
        HTTPException: 409 if a batch is already running.
        HTTPException: 422 if the options are invalid.
    """
    options = request.app.state.settings.batch_defaults()
    options.update(body.options)
    try:
        request.app.state.task = engine.launch(
            body.targets, body.mode, options
        )
    except EngineBusyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=e.message
        ) from e
    except InputError as e:
        raise HTTPException(status_code=422, detail=e.message) from e
    assert engine.current is not None
    return engine.current.to_dict()


@router.post("/stop")
async def stop_run(engine: EngineDep) -> ActionResponse:
    """Request a cooperative stop of the running batch."""
    return ActionResponse(accepted=engine.stop())


@router.post("/captcha/confirm")
async def confirm_captcha(engine: EngineDep) -> ActionResponse:
    """Resume a batch suspended on a CAPTCHA."""
    return ActionResponse(accepted=engine.confirm_captcha_resolved())
