"""Execution API Router.

This module provides REST API endpoints for inspecting run records, their
block executions and timelines, and for cancelling runs.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from blockflow.api.deps import Jobs, Tracker  # noqa: TC001 - Required at runtime for FastAPI
from blockflow.core.exceptions import ResourceNotFoundError
from blockflow.models.enums import ExecutionMode, ExecutionStatus, JobStatus
from blockflow.schemas.execution import (
    CancelExecutionResponse,
    ExecutionDetailResponse,
    ExecutionListResponse,
    ExecutionResponse,
    ExecutionStats,
    TimelineEventResponse,
)

router = APIRouter()


@router.get(
    "/",
    response_model=ExecutionListResponse,
    summary="List executions",
)
async def list_executions(
    tracker: Tracker,
    workflow_id: Annotated[str | None, Query(description="Filter by workflow")] = None,
    status: Annotated[ExecutionStatus | None, Query(description="Filter by status")] = None,
    mode: Annotated[ExecutionMode | None, Query(description="Filter by mode")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ExecutionListResponse:
    """List run records, newest first."""
    executions, total = await tracker.list_executions(
        workflow_id=workflow_id,
        status=status,
        mode=mode,
        limit=limit,
        offset=offset,
    )
    return ExecutionListResponse(
        items=[ExecutionResponse.model_validate(execution) for execution in executions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/stats",
    response_model=ExecutionStats,
    summary="Execution statistics",
)
async def get_execution_stats(
    tracker: Tracker,
    workflow_id: Annotated[str | None, Query(description="Restrict to one workflow")] = None,
) -> ExecutionStats:
    """Run counts per status, success rate and average run time."""
    return ExecutionStats.model_validate(await tracker.get_execution_stats(workflow_id))


@router.get(
    "/{execution_id}",
    response_model=ExecutionDetailResponse,
    summary="Get execution",
)
async def get_execution(execution_id: str, tracker: Tracker) -> ExecutionDetailResponse:
    """Get a run record with its block executions and timeline."""
    execution = await tracker.get_execution_by_id(execution_id, with_details=True)
    if execution is None:
        raise ResourceNotFoundError("execution", execution_id)
    return ExecutionDetailResponse.model_validate(execution)


@router.get(
    "/{execution_id}/timeline",
    response_model=list[TimelineEventResponse],
    summary="Get execution timeline",
)
async def get_execution_timeline(
    execution_id: str, tracker: Tracker
) -> list[TimelineEventResponse]:
    """Ordered timeline events of a run."""
    if await tracker.get_execution_by_id(execution_id) is None:
        raise ResourceNotFoundError("execution", execution_id)
    events = await tracker.get_execution_timeline(execution_id)
    return [TimelineEventResponse.model_validate(event) for event in events]


@router.post(
    "/{execution_id}/cancel",
    response_model=CancelExecutionResponse,
    summary="Cancel execution",
    description="Cancel the run record and signal the in-memory job, if any.",
)
async def cancel_execution(
    execution_id: str,
    tracker: Tracker,
    jobs: Jobs,
) -> CancelExecutionResponse:
    """Request cooperative cancellation of a run."""
    cancelled = await tracker.cancel_execution(execution_id)
    job = jobs.cancel_job(execution_id)

    if not cancelled and job is None:
        if await tracker.get_execution_by_id(execution_id) is None:
            raise ResourceNotFoundError("execution", execution_id)

    return CancelExecutionResponse(
        execution_id=execution_id,
        cancelled=cancelled or (job is not None and job.status == JobStatus.CANCELLED),
        job_status=job.status if job else None,
    )
