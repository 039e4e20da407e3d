"""Stored workflow definitions.

A ``Workflow`` row keeps a complete workflow definition as a JSON document
together with catalog fields and run counters. Deletion is soft.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from blockflow.models.base import (
    Base,
    JSONType,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDMixin,
    utcnow,
)


class Workflow(UUIDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Workflow model holding a stored definition.

    Attributes:
        id: UUID primary key (from UUIDMixin)
        workflow_id: Public, unique workflow identifier
        name: Display name of the workflow
        description: Optional description of the workflow's purpose
        version: Definition version string
        definition: JSON workflow definition (nodes, edges, globals)
        is_active: Whether the workflow can be executed
        category: Optional catalog category
        tags: List of catalog tags
        total_executions: Number of finished runs
        successful_executions: Number of completed runs
        failed_executions: Number of failed runs
        last_executed_at: When the last run finished (nullable)
        created_by: Identifier of the creating user (nullable)
        created_at: Timestamp of creation (from TimestampMixin)
        updated_at: Timestamp of last update (from TimestampMixin)
        deleted_at: Soft delete timestamp (from SoftDeleteMixin)
    """

    __tablename__ = "workflows"

    workflow_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    version: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="1.0.0",
        server_default="1.0.0",
    )

    definition: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )

    category: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )

    tags: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    # Run counters
    total_executions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    successful_executions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    failed_executions: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    last_executed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    def record_execution(self, *, success: bool) -> None:
        """Bump the run counters after a run finished."""
        self.total_executions += 1
        if success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        self.last_executed_at = utcnow()

    def __repr__(self) -> str:
        """Return string representation of the workflow."""
        return (
            f"<Workflow(workflow_id='{self.workflow_id}', name='{self.name}', "
            f"version={self.version})>"
        )


__all__ = ["Workflow"]
