"""
Core module initialization.
Exports configuration, logging utilities and domain exceptions.
"""

from bistro.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from bistro.core.exceptions import (
    OrderingError,
    ValidationError,
    PersistenceError,
    InvalidStateTransition,
    NotFound,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderingError",
    "ValidationError",
    "PersistenceError",
    "InvalidStateTransition",
    "NotFound",
]
