"""Common application exceptions.

Every error raised deliberately by the engine derives from ``AppError`` so
the API layer can translate it into a JSON body with a stable error code.
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Base Exception
# =============================================================================


class AppError(Exception):
    """Application base exception.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code for API responses.
        details: Additional error context as dictionary.
    """

    default_code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Resource Exceptions
# =============================================================================


class ResourceNotFoundError(AppError):
    """Raised when a requested resource does not exist.

    Attributes:
        resource_type: Kind of resource (e.g. "workflow", "execution").
        resource_id: Identifier that was looked up.
    """

    default_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type.capitalize()} '{resource_id}' not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ResourceStateError(AppError):
    """Raised when an operation conflicts with a resource's current state.

    Example:
        >>> raise ResourceStateError("workflow", "wf-1", "Workflow is not active")
    """

    default_code = "INVALID_RESOURCE_STATE"

    def __init__(self, resource_type: str, resource_id: str, reason: str) -> None:
        super().__init__(
            reason,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# =============================================================================
# Exports
# =============================================================================


__all__ = [
    "AppError",
    "ResourceNotFoundError",
    "ResourceStateError",
]
