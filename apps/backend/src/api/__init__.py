"""
VPS Autoscaler API - FastAPI routers and endpoints.

This package contains the management REST API organized by resource type.
"""

from fastapi import APIRouter

from .alerts import router as alerts_router
from .control_loop import router as control_loop_router
from .scaling import router as scaling_router
from .servers import router as servers_router

# Create main API router (no prefix since it's mounted at /api in main.py)
api_router = APIRouter(tags=["API"])

api_router.include_router(servers_router, prefix="/servers", tags=["Servers"])
api_router.include_router(alerts_router, prefix="/alerts", tags=["Alerts"])
api_router.include_router(scaling_router, prefix="/scaling", tags=["Scaling"])
api_router.include_router(control_loop_router, prefix="/control-loop", tags=["Control Loop"])

__all__ = ["api_router"]
