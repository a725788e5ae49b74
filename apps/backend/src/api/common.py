"""
Common API dependencies

Authentication, rate limiting and service providers shared by the
management API routers.
"""

import logging
import secrets
from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.backend.src.core.clock import Clock, SystemClock
from apps.backend.src.core.config import get_settings
from apps.backend.src.core.database import get_async_session_factory
from apps.backend.src.services.alert_store import AlertStore
from apps.backend.src.services.control_loop import ControlLoopDriver
from apps.backend.src.services.metric_store import MetricStore
from apps.backend.src.services.scaling_ledger import ScalingLedger
from apps.backend.src.services.scaling_policy_service import ScalingPolicyService
from apps.backend.src.services.server_registry import ServerRegistry

logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

# Rate limiter for API endpoints
settings = get_settings()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.api.rate_limit_requests_per_minute}/minute"]
    if settings.api.rate_limit_enabled
    else [],
)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict[str, Any] | None:
    """Authentication dependency for protected endpoints"""
    api_key = get_settings().auth.api_key

    if not api_key:
        return None  # No auth required

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not secrets.compare_digest(credentials.credentials, api_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {"token": credentials.credentials}


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_async_session_factory()


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_server_registry(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ServerRegistry:
    return ServerRegistry(session_factory)


def get_metric_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> MetricStore:
    return MetricStore(session_factory)


def get_alert_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AlertStore:
    return AlertStore(session_factory)


def get_scaling_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ScalingLedger:
    return ScalingLedger(session_factory)


def get_policy_service(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ScalingPolicyService:
    return ScalingPolicyService(
        session_factory, provisioning_client=getattr(request.app.state, "provisioning_client", None)
    )


def get_control_loop(request: Request) -> ControlLoopDriver:
    control_loop = getattr(request.app.state, "control_loop", None)
    if control_loop is None:
        raise HTTPException(status_code=503, detail="Control loop is not initialized")
    return control_loop
