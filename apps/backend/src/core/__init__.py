"""
Core modules including database, configuration, clock and shared errors.
"""

from .clock import Clock, SystemClock
from .config import get_settings, settings
from .database import (
    Base,
    check_database_health,
    close_database,
    get_async_session,
    init_database,
    test_database_connection,
)

__all__ = [
    "Clock",
    "SystemClock",
    "get_settings",
    "settings",
    "init_database",
    "close_database",
    "get_async_session",
    "test_database_connection",
    "check_database_health",
    "Base",
]
