"""
Control Loop API Endpoints
"""

import logging

from fastapi import APIRouter, Depends, Request

from apps.backend.src.api.common import get_control_loop, get_current_user, limiter
from apps.backend.src.schemas.control_loop import ControlLoopStatus, TickSummary
from apps.backend.src.services.control_loop import ControlLoopDriver
from apps.backend.src.utils.exception_handling import handle_exceptions

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status", response_model=ControlLoopStatus)
async def get_status(
    control_loop: ControlLoopDriver = Depends(get_control_loop),
    current_user: dict | None = Depends(get_current_user),
) -> ControlLoopStatus:
    return control_loop.status()


@router.post("/ticks", response_model=TickSummary)
@limiter.limit("6/minute")
@handle_exceptions(message="Control loop tick failed")
async def run_tick(
    request: Request,
    control_loop: ControlLoopDriver = Depends(get_control_loop),
    current_user: dict | None = Depends(get_current_user),
) -> TickSummary:
    """Run one tick immediately; waits for an in-flight tick to finish first."""
    logger.info("control_loop.tick.requested", extra={"client": request.client.host if request.client else None})
    return await control_loop.run_tick()
