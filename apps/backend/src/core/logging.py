"""
Structured logging configuration with request- and tick-scoped correlation IDs.

- Provides setup_logging() to configure structlog + stdlib bridge
- Exposes request_id_var / tick_id_var ContextVars and helpers
"""
from __future__ import annotations

from contextvars import ContextVar
from datetime import datetime, timezone
import logging
from typing import Any, MutableMapping

import structlog

# Context variables to carry correlation ids across async tasks
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
tick_id_var: ContextVar[str | None] = ContextVar("tick_id", default=None)

AUDIT_LOGGER_NAME = "autoscaler.audit"


def _add_correlation_ids(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Structlog processor to inject request_id and tick_id from contextvars."""
    rid = request_id_var.get()
    if rid is not None:
        event_dict["request_id"] = rid
    tid = tick_id_var.get()
    if tid is not None:
        event_dict["tick_id"] = tid
    return event_dict


def _iso_time(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(level: int | str = logging.INFO, log_format: str = "json") -> None:
    """Configure structured logging with stdlib bridge.

    stdlib ``logging.getLogger()`` records are routed through structlog so the
    ``extra={...}`` fields end up as keys of the rendered event.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_ids,
        _iso_time,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
        wrapper_class=structlog.stdlib.BoundLogger,
    )

    handler = logging.StreamHandler()
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            *shared_processors,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.format_exc_info,
        ],
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Clear existing handlers to avoid duplicate logs
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_audit_logger() -> logging.Logger:
    """Logger receiving one record per scaling decision and execution."""
    return logging.getLogger(AUDIT_LOGGER_NAME)


def get_request_id() -> str | None:
    return request_id_var.get()


def set_request_id(value: str | None) -> None:
    request_id_var.set(value)


def set_tick_id(value: str | None) -> None:
    tick_id_var.set(value)
