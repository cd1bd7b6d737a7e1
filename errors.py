"""Error hierarchy: typed, categorized exceptions for every API failure mode.

Invariants:
    - Every error has a code (str), a category (ErrorCategory) and an HTTP status
    - to_response() produces the {success: false, message, code} envelope
    - User-facing messages never carry internal details
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    DATABASE = "database"
    INTERNAL = "internal"


class StoreError(Exception):
    """Base class for all API errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        http_status: int = 400,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.http_status = http_status
        self.details = details

    def to_response(self) -> dict:
        body = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            body["errors"] = self.details
        return body


# ─── Client errors (400-level) ──────────────────────────────────

class ValidationError(StoreError):
    """Request data is well-formed but not acceptable."""
    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION, 400, details,
        )


class ConflictError(StoreError):
    """The resource's current state does not allow the operation."""
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code, ErrorCategory.CONFLICT, 400)


class DuplicateFieldError(ConflictError):
    """A unique field value is already taken."""
    def __init__(self, field: str):
        super().__init__(f"{field} is already registered", "DUPLICATE_FIELD")
        self.field = field


class AuthenticationError(StoreError):
    """Missing, expired or invalid credential, or a deactivated account."""
    def __init__(self, message: str):
        super().__init__(message, "UNAUTHORIZED", ErrorCategory.AUTHENTICATION, 401)


class PermissionDeniedError(StoreError):
    def __init__(self, message: str = "Admin access required"):
        super().__init__(message, "FORBIDDEN", ErrorCategory.AUTHORIZATION, 403)


class NotFoundError(StoreError):
    """Resource absent, or not owned by the caller."""
    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource} not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND, 404,
        )
        self.resource = resource


# ─── Infrastructure errors (500-level) ──────────────────────────

class DatabaseError(StoreError):
    def __init__(self, operation: str):
        super().__init__(
            f"Database {operation} failed",
            "DATABASE_ERROR", ErrorCategory.DATABASE, 503,
        )
