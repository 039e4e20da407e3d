"""Stored workflow service layer.

This module provides the WorkflowService, which stores, lists, updates and
soft-deletes workflow definitions and keeps their run counters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from blockflow.core.exceptions import AppError, ResourceNotFoundError, ResourceStateError
from blockflow.core.logging import get_logger
from blockflow.models.workflow import Workflow
from blockflow.schemas.workflow import WorkflowDefinition

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from blockflow.schemas.workflow import WorkflowCreate, WorkflowUpdate

logger = get_logger(__name__)

_NON_NULLABLE = frozenset({"name", "is_active", "tags"})

# =============================================================================
# Exceptions
# =============================================================================


class WorkflowAlreadyExistsError(AppError):
    """Raised when storing a workflow id that is already taken."""

    default_code = "WORKFLOW_ALREADY_EXISTS"

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            f"Workflow '{workflow_id}' already exists",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


# =============================================================================
# WorkflowService
# =============================================================================


class WorkflowService:
    """Service for stored workflow CRUD operations.

    The session is flushed but never committed; the caller (``get_db`` or the
    workflow runner) owns the transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize workflow service."""
        self.db = db

    async def create(
        self, data: WorkflowCreate, created_by: str | None = None
    ) -> Workflow:
        """Store a new workflow.

        Raises:
            WorkflowAlreadyExistsError: If the workflow id is taken, even by a
                soft-deleted workflow.
        """
        definition = data.definition
        if await self.get(definition.workflow_id, include_deleted=True) is not None:
            raise WorkflowAlreadyExistsError(definition.workflow_id)

        workflow = Workflow(
            workflow_id=definition.workflow_id,
            name=data.name or definition.name,
            description=data.description or definition.description,
            version=definition.version,
            definition=definition.model_dump(mode="json"),
            is_active=data.is_active,
            category=data.category,
            tags=list(data.tags),
            created_by=created_by,
        )
        self.db.add(workflow)
        await self.db.flush()
        await self.db.refresh(workflow)

        logger.info(
            "Workflow stored",
            extra={
                "context": {
                    "workflow_id": workflow.workflow_id,
                    "nodes": len(definition.nodes),
                    "created_by": created_by,
                }
            },
        )
        return workflow

    async def get(
        self, workflow_id: str, *, include_deleted: bool = False
    ) -> Workflow | None:
        """Get a workflow by its public id."""
        query = select(Workflow).where(Workflow.workflow_id == workflow_id)
        if not include_deleted:
            query = query.where(Workflow.deleted_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_raise(self, workflow_id: str) -> Workflow:
        """Get a workflow or raise ResourceNotFoundError."""
        workflow = await self.get(workflow_id)
        if workflow is None:
            raise ResourceNotFoundError("workflow", workflow_id)
        return workflow

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition:
        """Load the executable definition of an active workflow.

        Raises:
            ResourceNotFoundError: If the workflow does not exist.
            ResourceStateError: If the workflow is inactive.
        """
        workflow = await self.get_or_raise(workflow_id)
        if not workflow.is_active:
            raise ResourceStateError("workflow", workflow_id, "Workflow is not active")
        return WorkflowDefinition.model_validate(workflow.definition)

    def _filtered(
        self,
        query: Any,
        category: str | None,
        is_active: bool | None,
        search: str | None,
    ) -> Any:
        query = query.where(Workflow.deleted_at.is_(None))
        if category is not None:
            query = query.where(Workflow.category == category)
        if is_active is not None:
            query = query.where(Workflow.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Workflow.name.ilike(pattern), Workflow.description.ilike(pattern))
            )
        return query

    async def list(
        self,
        skip: int = 0,
        limit: int = 20,
        category: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> list[Workflow]:
        """List workflows, most recently updated first."""
        query = self._filtered(select(Workflow), category, is_active, search)
        query = query.order_by(Workflow.updated_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(
        self,
        category: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> int:
        """Count workflows matching the list filters."""
        query = self._filtered(
            select(func.count()).select_from(Workflow), category, is_active, search
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def update(self, workflow_id: str, data: WorkflowUpdate) -> Workflow:
        """Apply a partial update.

        Raises:
            ResourceNotFoundError: If the workflow does not exist.
            ResourceStateError: If a new definition changes the workflow id.
        """
        workflow = await self.get_or_raise(workflow_id)
        update_data = data.model_dump(exclude_unset=True, exclude={"definition"})

        if data.definition is not None:
            if data.definition.workflow_id != workflow_id:
                raise ResourceStateError(
                    "workflow",
                    workflow_id,
                    "Definition workflow_id does not match the stored workflow",
                )
            workflow.definition = data.definition.model_dump(mode="json")
            workflow.version = data.definition.version

        for key, value in update_data.items():
            if value is None and key in _NON_NULLABLE:
                continue
            setattr(workflow, key, value)

        await self.db.flush()
        await self.db.refresh(workflow)
        return workflow

    async def delete(self, workflow_id: str) -> Workflow:
        """Soft-delete a workflow."""
        workflow = await self.get_or_raise(workflow_id)
        workflow.soft_delete()
        await self.db.flush()
        logger.info("Workflow deleted", extra={"context": {"workflow_id": workflow_id}})
        return workflow

    async def record_execution(self, workflow_id: str, *, success: bool) -> bool:
        """Bump the run counters of a stored workflow.

        Returns:
            False if no stored workflow has this id (e.g. inline runs).
        """
        workflow = await self.get(workflow_id)
        if workflow is None:
            return False
        workflow.record_execution(success=success)
        await self.db.flush()
        return True


__all__ = ["WorkflowAlreadyExistsError", "WorkflowService"]
