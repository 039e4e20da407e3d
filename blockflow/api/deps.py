"""API dependencies.

Common dependencies for API routes: database sessions, pagination, the
caller identity and the shared engine services (tracker, runner, job
processor, block registry).
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blockflow.db.session import async_session, get_db
from blockflow.services.execution_tracking import ExecutionTrackingService
from blockflow.services.job_processor import JobProcessor, get_job_processor
from blockflow.services.workflow.blocks import BlockRegistry, get_registry
from blockflow.services.workflow.orchestrator import WorkflowOrchestrator
from blockflow.services.workflow.validator import WorkflowValidator
from blockflow.services.workflow_runner import WorkflowRunner

ANONYMOUS_USER = "anonymous"

# =============================================================================
# Database Session Dependency
# =============================================================================

DBSession = Annotated[AsyncSession, Depends(get_db)]
"""Type alias for database session dependency injection.

Usage:
    @router.get("/workflows/")
    async def list_workflows(db: DBSession):
        return await WorkflowService(db).list()
"""


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory used by services that open their own sessions."""
    return async_session


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


# =============================================================================
# Pagination Dependencies
# =============================================================================


class PaginationParams(BaseModel):
    """Pagination parameters for list endpoints.

    Attributes:
        skip: Number of records to skip (offset).
        limit: Maximum number of records to return.
    """

    skip: int = Field(default=0, ge=0, description="Number of records to skip")
    limit: int = Field(
        default=20, ge=1, le=100, description="Maximum number of records to return"
    )

    @property
    def page(self) -> int:
        """1-indexed page number of ``skip``."""
        return self.skip // self.limit + 1


def get_pagination_params(
    skip: Annotated[int, Query(ge=0, description="Number of records to skip")] = 0,
    limit: Annotated[
        int, Query(ge=1, le=100, description="Maximum number of records to return")
    ] = 20,
) -> PaginationParams:
    """Get pagination parameters from query string.

    Args:
        skip: Number of records to skip (default: 0).
        limit: Maximum number of records to return (default: 20, max: 100).

    Returns:
        PaginationParams: Pagination configuration.
    """
    return PaginationParams(skip=skip, limit=limit)


Pagination = Annotated[PaginationParams, Depends(get_pagination_params)]


# =============================================================================
# Caller Identity
# =============================================================================


def get_current_user_id(
    x_user_id: Annotated[
        str | None,
        Header(description="Caller identity; anonymous when omitted"),
    ] = None,
) -> str:
    """Caller identity from the ``X-User-Id`` header."""
    if x_user_id is None or not x_user_id.strip():
        return ANONYMOUS_USER
    return x_user_id.strip()


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


# =============================================================================
# Engine Services
# =============================================================================


@lru_cache
def _tracker_for(session_factory: async_sessionmaker[AsyncSession]) -> ExecutionTrackingService:
    return ExecutionTrackingService(session_factory)


@lru_cache
def _runner_for(session_factory: async_sessionmaker[AsyncSession]) -> WorkflowRunner:
    orchestrator = WorkflowOrchestrator(get_registry())
    return WorkflowRunner(
        session_factory,
        orchestrator=orchestrator,
        validator=WorkflowValidator(orchestrator.registry),
        tracker=_tracker_for(session_factory),
    )


def get_tracker(session_factory: SessionFactory) -> ExecutionTrackingService:
    """Shared tracking service of the session factory."""
    return _tracker_for(session_factory)


def get_runner(session_factory: SessionFactory) -> WorkflowRunner:
    """Shared workflow runner of the session factory."""
    return _runner_for(session_factory)


def get_block_registry() -> BlockRegistry:
    """The process-wide block registry."""
    return get_registry()


Tracker = Annotated[ExecutionTrackingService, Depends(get_tracker)]
Runner = Annotated[WorkflowRunner, Depends(get_runner)]
Jobs = Annotated[JobProcessor, Depends(get_job_processor)]
Registry = Annotated[BlockRegistry, Depends(get_block_registry)]


__all__ = [
    "ANONYMOUS_USER",
    "CurrentUserId",
    "DBSession",
    "Jobs",
    "Pagination",
    "PaginationParams",
    "Registry",
    "Runner",
    "SessionFactory",
    "Tracker",
    "get_block_registry",
    "get_current_user_id",
    "get_db",
    "get_job_processor",
    "get_pagination_params",
    "get_runner",
    "get_session_factory",
    "get_tracker",
]
