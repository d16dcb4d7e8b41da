"""
Shared error handling for the catalog service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CatalogException(Exception):
    """Base exception for catalog services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(CatalogException):
    """Missing or out-of-range parameters."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(CatalogException):
    """Referenced entity is absent from the store."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreError(CatalogException):
    """Underlying datastore failure (network, timeout, query error)."""

    status_code = 503

    def __init__(self, message: str = "Store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)


class CacheTierError(CatalogException):
    """A cache tier is unavailable.

    Raised by tier implementations and caught at the tier boundary; it never
    reaches a caller of the read path or the invalidation coordinator.
    """

    def __init__(self, tier: str, message: str = "Cache tier unavailable", details: Optional[Dict[str, Any]] = None):
        self.tier = tier
        super().__init__("CACHE_TIER_ERROR", f"{tier}: {message}", details)


class DependencyUpdateError(CatalogException):
    """A cross-entity side effect failed and the primary write was rolled back."""

    status_code = 500

    def __init__(self, message: str = "Dependent update failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPENDENCY_UPDATE_ERROR", message, details)
