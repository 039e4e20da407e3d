"""Workflow API Router.

This module provides REST API endpoints for validating, storing and
executing workflows. Service errors (``AppError`` subclasses) are rendered
by the application-level exception handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Query, status

from blockflow.api.deps import (  # noqa: TC001 - Required at runtime for FastAPI
    CurrentUserId,
    DBSession,
    Jobs,
    Pagination,
    Registry,
    Runner,
)
from blockflow.models.enums import ExecutionStatus, JobType
from blockflow.schemas.execution import (
    ExecuteInlineRequest,
    ExecuteWorkflowRequest,
    ExecuteWorkflowResponse,
)
from blockflow.schemas.validation import (
    ValidateWorkflowRequest,
    ValidationResult,
)
from blockflow.schemas.workflow import (
    WorkflowCreate,
    WorkflowDefinition,
    WorkflowPaginatedResponse,
    WorkflowResponse,
    WorkflowUpdate,
)
from blockflow.services.workflow.context import ContextFactory
from blockflow.services.workflow.exceptions import WorkflowError
from blockflow.services.workflow.validator import WorkflowValidator
from blockflow.services.workflow_runner import WorkflowJobPayload
from blockflow.services.workflow_service import WorkflowService

if TYPE_CHECKING:
    from blockflow.services.job_processor import JobProcessor
    from blockflow.services.workflow.results import WorkflowRunResult
    from blockflow.services.workflow_runner import WorkflowRunner

router = APIRouter()


# =============================================================================
# Validation Endpoint
# =============================================================================


@router.post(
    "/validate",
    response_model=ValidationResult,
    summary="Validate workflow",
    description="Check a definition for structural, graph, schema and block errors.",
)
async def validate_workflow(
    request: ValidateWorkflowRequest,
    registry: Registry,
) -> ValidationResult:
    """Validate a workflow definition without running it."""
    return WorkflowValidator(registry).validate(request.definition, request.options)


# =============================================================================
# Stored Workflow Endpoints
# =============================================================================


@router.get(
    "/",
    response_model=WorkflowPaginatedResponse,
    summary="List workflows",
)
async def list_workflows(
    db: DBSession,
    pagination: Pagination,
    category: Annotated[str | None, Query(description="Filter by category")] = None,
    is_active: Annotated[bool | None, Query(description="Filter by active status")] = None,
    search: Annotated[str | None, Query(description="Match name or description")] = None,
) -> WorkflowPaginatedResponse:
    """List stored workflows with pagination and optional filtering."""
    service = WorkflowService(db)
    workflows = await service.list(
        skip=pagination.skip,
        limit=pagination.limit,
        category=category,
        is_active=is_active,
        search=search,
    )
    total = await service.count(category=category, is_active=is_active, search=search)
    return WorkflowPaginatedResponse.create(
        items=[WorkflowResponse.model_validate(workflow) for workflow in workflows],
        total=total,
        page=pagination.page,
        size=pagination.limit,
    )


@router.post(
    "/",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store workflow",
)
async def create_workflow(
    db: DBSession,
    workflow_in: WorkflowCreate,
    user_id: CurrentUserId,
) -> WorkflowResponse:
    """Store a new workflow definition."""
    workflow = await WorkflowService(db).create(workflow_in, created_by=user_id)
    return WorkflowResponse.model_validate(workflow)


@router.get(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Get workflow",
)
async def get_workflow(db: DBSession, workflow_id: str) -> WorkflowResponse:
    """Get a stored workflow by id."""
    workflow = await WorkflowService(db).get_or_raise(workflow_id)
    return WorkflowResponse.model_validate(workflow)


@router.patch(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Update workflow",
)
async def update_workflow(
    db: DBSession,
    workflow_id: str,
    workflow_in: WorkflowUpdate,
) -> WorkflowResponse:
    """Partially update a stored workflow."""
    workflow = await WorkflowService(db).update(workflow_id, workflow_in)
    return WorkflowResponse.model_validate(workflow)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete workflow",
)
async def delete_workflow(db: DBSession, workflow_id: str) -> None:
    """Soft-delete a stored workflow."""
    await WorkflowService(db).delete(workflow_id)


# =============================================================================
# Execute Endpoints
# =============================================================================


def _run_response(result: WorkflowRunResult, job_id: str | None) -> ExecuteWorkflowResponse:
    return ExecuteWorkflowResponse.model_validate(
        {**result.to_dict(), "job_id": job_id}
    )


async def _execute(
    definition: WorkflowDefinition,
    request: ExecuteWorkflowRequest,
    runner: WorkflowRunner,
    jobs: JobProcessor,
    user_id: str,
) -> ExecuteWorkflowResponse:
    """Validate, then run the definition as a job (inline or in the background)."""
    runner.validator.validate_or_raise(definition)

    payload = WorkflowJobPayload(
        workflow_definition=definition,
        input=request.input,
        mode=request.mode,
        variables=request.variables,
        secrets=request.secrets,
        metadata={"user_id": user_id},
        timeout=request.timeout,
    )
    execution_id = ContextFactory.generate_execution_id()
    job = jobs.create_job(user_id, JobType.WORKFLOW, payload.public_dict(), job_id=execution_id)

    if not request.wait:
        jobs.start_job_in_background(job.id, runner.job_body(payload))
        return ExecuteWorkflowResponse(
            execution_id=execution_id,
            job_id=job.id,
            workflow_id=definition.workflow_id,
            status=ExecutionStatus.PENDING,
        )

    results: list[WorkflowRunResult] = []
    job = await jobs.start_job(job.id, runner.job_body(payload, on_result=results.append))
    if not results:
        message = job.result.error if job.result and job.result.error else None
        raise WorkflowError(message or "Workflow execution failed", details={"job_id": job.id})
    return _run_response(results[0], job.id)


@router.post(
    "/execute",
    response_model=ExecuteWorkflowResponse,
    summary="Execute inline workflow",
)
async def execute_inline_workflow(
    request: ExecuteInlineRequest,
    runner: Runner,
    jobs: Jobs,
    user_id: CurrentUserId,
) -> ExecuteWorkflowResponse:
    """Run a definition supplied in the request body."""
    return await _execute(request.definition, request, runner, jobs, user_id)


@router.post(
    "/{workflow_id}/execute",
    response_model=ExecuteWorkflowResponse,
    summary="Execute stored workflow",
)
async def execute_workflow(
    db: DBSession,
    workflow_id: str,
    request: ExecuteWorkflowRequest,
    runner: Runner,
    jobs: Jobs,
    user_id: CurrentUserId,
) -> ExecuteWorkflowResponse:
    """Run the definition of an active stored workflow."""
    definition = await WorkflowService(db).get_definition(workflow_id)
    # Counter updates happen in the runner's own session
    await db.commit()
    return await _execute(definition, request, runner, jobs, user_id)
