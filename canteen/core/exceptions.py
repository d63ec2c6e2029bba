"""
Error hierarchy shared by the stores, the storage backends and the API.

    CanteenError
    ├── NotFoundError          missing vendor/item (API only, stores no-op)
    ├── ValidationError        bad input, rejected before any state change
    │   └── InvalidQRPayloadError
    ├── ConflictError          request clashes with current state
    ├── PersistenceError       durable read/write/remove failed
    └── ParseError             stored payload is corrupt
"""

from typing import Optional


class CanteenError(Exception):
    """Base class for all application errors."""


class NotFoundError(CanteenError):
    """A vendor, menu item or cart line does not exist."""


class ValidationError(CanteenError):
    """Input rejected before touching any state."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidQRPayloadError(ValidationError):
    """Scanned text is not a recognised canteen QR payload."""


class ConflictError(CanteenError):
    """The request is valid but clashes with current state (e.g. an order transition)."""


class PersistenceError(CanteenError):
    """
    The durable key-value store could not complete an operation.

    Attributes:
        key: Storage slot involved
        operation: "get", "set" or "remove"
    """

    def __init__(self, message: str, key: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.key = key
        self.operation = operation


class ParseError(CanteenError):
    """A persisted payload could not be decoded."""
