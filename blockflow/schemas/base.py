"""Base Pydantic schemas with common patterns.

This module defines base schemas and common patterns used across the API.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


class BaseSchema(BaseModel):
    """Base schema with common configuration for all schemas.

    Configures Pydantic v2 settings for consistent behavior across all schemas.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )


class PaginatedResponse[T](BaseSchema):
    """Generic paginated response wrapper.

    Provides consistent pagination metadata for all list endpoints.
    """

    items: list[T] = Field(
        ...,
        description="List of items in the current page",
    )
    total: int = Field(
        ...,
        ge=0,
        description="Total number of items across all pages",
        examples=[100],
    )
    page: int = Field(
        ...,
        ge=1,
        description="Current page number (1-indexed)",
        examples=[1],
    )
    size: int = Field(
        ...,
        ge=1,
        description="Number of items per page",
        examples=[20],
    )
    pages: int = Field(
        ...,
        ge=0,
        description="Total number of pages",
        examples=[5],
    )

    @classmethod
    def create(
        cls,
        items: list[T],
        total: int,
        page: int,
        size: int,
    ) -> PaginatedResponse[T]:
        """Create a paginated response from items and pagination info.

        Args:
            items: List of items for the current page.
            total: Total number of items across all pages.
            page: Current page number.
            size: Number of items per page.

        Returns:
            A PaginatedResponse instance with calculated pages.
        """
        pages = (total + size - 1) // size if size > 0 else 0
        return cls(
            items=items,
            total=total,
            page=page,
            size=size,
            pages=pages,
        )


class ErrorResponse(BaseSchema):
    """Standard error response schema."""

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["RESOURCE_NOT_FOUND"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Workflow 'wf-1' not found"],
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional error details",
    )


# Common field definitions for reuse
NameField: FieldInfo = cast(
    "FieldInfo",
    Field(
        ...,
        min_length=1,
        max_length=255,
        description="Display name",
        examples=["My Workflow"],
    ),
)

DescriptionField: FieldInfo = cast(
    "FieldInfo",
    Field(
        default=None,
        max_length=2000,
        description="Optional description",
        examples=["This workflow enriches incoming leads"],
    ),
)


__all__ = [
    "BaseSchema",
    "DescriptionField",
    "ErrorResponse",
    "NameField",
    "PaginatedResponse",
]
