"""
Reusable exception handling utilities: decorator for consistent logging and
HTTPException generation in API handlers.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

from fastapi import HTTPException
from apps.backend.src.core.exceptions import (
    ConfigNotFoundError,
    ExternalServiceError,
    InfrastructureException,
    PolicyValidationError,
    ResourceNotFoundError,
    ServerNotFoundError,
    UnreachableError,
)
from apps.backend.src.core.logging import get_request_id

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)

# Domain exception -> HTTP status
STATUS_BY_EXCEPTION: list[tuple[type[InfrastructureException], int]] = [
    (ServerNotFoundError, 404),
    (ResourceNotFoundError, 404),
    (ConfigNotFoundError, 409),
    (PolicyValidationError, 422),
    (UnreachableError, 503),
    (ExternalServiceError, 502),
]


def status_for_exception(exc: InfrastructureException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def handle_exceptions(
    *,
    message: str = "Operation failed",
    status_code: int = 500,
    error_code: str | None = None,
    rethrow: tuple[type[BaseException], ...] | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator to standardize exception logging and HTTP responses for ASYNC callables.

    - Domain exceptions become HTTPException with their mapped status and payload
    - Unknown exceptions are logged and converted to HTTPException(status_code)
    - HTTPException and exceptions listed in `rethrow` pass through untouched
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except Exception as e:  # noqa: BLE001 - centralizing logging
                if isinstance(e, HTTPException) or (rethrow and isinstance(e, rethrow)):
                    raise
                request_id = get_request_id()

                if isinstance(e, InfrastructureException):
                    mapped_status = status_for_exception(e)
                    logger.warning(f"{message}: {e.message}", extra={"error_code": e.error_code})
                    detail: dict[str, Any] = e.to_dict()
                    if request_id:
                        detail["request_id"] = request_id
                    raise HTTPException(status_code=mapped_status, detail=detail) from e

                logger.error(f"{message}: {e}", exc_info=True)
                detail = {"detail": f"{message}: {str(e)}"}
                if request_id:
                    detail["request_id"] = request_id
                if error_code:
                    detail["code"] = error_code
                raise HTTPException(status_code=status_code, detail=detail) from e

        return wrapper

    return decorator
