"""
Core module initialization.
Exports configuration, logging utilities and the error hierarchy.
"""

from canteen.core.config import get_settings, Settings, EnvironmentMode, StorageBackend
from canteen.core.exceptions import (
    CanteenError,
    ConflictError,
    NotFoundError,
    ValidationError,
    InvalidQRPayloadError,
    PersistenceError,
    ParseError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "StorageBackend",
    "CanteenError",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
    "InvalidQRPayloadError",
    "PersistenceError",
    "ParseError",
]
