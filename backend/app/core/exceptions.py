"""
Inventory Exception Hierarchy

Structured exception classes for the stock, reception and notification
subsystems. All exceptions include code, message, and details so they can
be logged and serialized the same way. Some carry a French message for
direct display in the back office.

Exception Hierarchy:
    InventoryBaseError
    ├── ValidationError
    │   └── StockError
    ├── NotFoundError
    ├── ConflictError
    ├── AuthError
    │   └── PermissionDeniedError
    └── StreamClosedError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class InventoryBaseError(Exception):
    """
    Base exception for all inventory custom errors.

    Attributes:
        message: Human-readable error description (English)
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        message_fr: Optional French rendition for the admin UI
    """

    default_code: str = "INVENTORY_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        message_fr: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.message_fr = message_fr
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        body = {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.message_fr:
            body["message_fr"] = self.message_fr
        return body

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(InventoryBaseError):
    """Malformed or missing input; caller must correct and retry."""
    default_code = "VALIDATION_ERROR"
    http_status = 400


class StockError(ValidationError):
    """A stock change that would take a counter below zero."""
    default_code = "STOCK_ERROR"

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        size: Optional[str] = None,
        current_stock: Optional[int] = None,
        requested: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "reference": reference,
            "size": size,
            "current_stock": current_stock,
            "requested": requested,
        })
        super().__init__(message, details=details, **kwargs)


class NotFoundError(InventoryBaseError):
    """Facility, product, size, reception or order does not exist."""
    default_code = "NOT_FOUND"
    http_status = 404


class ConflictError(InventoryBaseError):
    """Request clashes with existing state (duplicate name, dependent rows)."""
    default_code = "CONFLICT"
    http_status = 409


class AuthError(InventoryBaseError):
    """Missing, invalid or expired credentials."""
    default_code = "AUTH_REQUIRED"
    http_status = 401


class PermissionDeniedError(AuthError):
    """Authenticated, but the role is not allowed here."""
    default_code = "PERMISSION_DENIED"
    http_status = 403


class StreamClosedError(InventoryBaseError):
    """Write attempted on a notification stream that is closed or saturated."""
    default_code = "STREAM_CLOSED"
