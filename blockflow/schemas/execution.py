"""Pydantic schemas for workflow runs, tracking records, blocks and jobs.

This module defines request/response schemas for the execute, executions,
blocks and jobs endpoints.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Required at runtime for Pydantic
from typing import Any
from uuid import UUID  # noqa: TC003 - Required at runtime for Pydantic

from pydantic import Field, computed_field

from blockflow.models.enums import BlockCategory, ExecutionMode, ExecutionStatus, JobStatus
from blockflow.schemas.base import BaseSchema
from blockflow.schemas.workflow import RetryPolicy, WorkflowDefinition

# =============================================================================
# Execute Request / Response Schemas
# =============================================================================


class ExecuteWorkflowRequest(BaseSchema):
    """Schema for running a stored workflow."""

    input: Any = Field(
        default=None,
        description="Input handed to the entry nodes",
        examples=[{"name": "Ana"}],
    )
    mode: ExecutionMode = Field(
        default=ExecutionMode.PRODUCTION,
        description="Execution mode (production, test, demo)",
    )
    variables: dict[str, Any] = Field(
        default_factory=dict,
        description="Run variables available as {{variables.*}}",
    )
    secrets: dict[str, str] = Field(
        default_factory=dict,
        description="Secret values available as {{secrets.*}}; never logged",
    )
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Run budget in seconds (overrides globals.timeout)",
        examples=[30.0],
    )
    wait: bool = Field(
        default=True,
        description="Wait for the run result instead of scheduling a job",
    )


class ExecuteInlineRequest(ExecuteWorkflowRequest):
    """Schema for running an inline workflow definition."""

    definition: WorkflowDefinition = Field(
        ...,
        description="Workflow definition to run",
    )


class NodeResultResponse(BaseSchema):
    """Outcome of one node in a run response."""

    node_id: str
    status: ExecutionStatus
    block_type: str | None = None
    output: Any = None
    error: dict[str, Any] | None = None
    execution_time_ms: float = 0.0
    retry_count: int = 0
    start_time: str | None = None
    end_time: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)


class ExecuteWorkflowResponse(BaseSchema):
    """Response of the execute endpoints.

    For ``wait=false`` only ``execution_id``, ``job_id`` and ``status``
    (pending) are set.
    """

    execution_id: str = Field(..., description="Run identifier")
    job_id: str | None = Field(default=None, description="Background job id")
    workflow_id: str = Field(..., description="Executed workflow")
    status: ExecutionStatus = Field(..., description="Run status")
    output: Any = Field(default=None, description="Merged terminal output")
    error: dict[str, Any] | None = Field(default=None)
    node_results: dict[str, NodeResultResponse] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: float | None = Field(default=None)


# =============================================================================
# Tracking Record Schemas
# =============================================================================


class BlockExecutionResponse(BaseSchema):
    """Schema for a block execution record."""

    id: UUID
    execution_id: str
    node_id: str
    block_type: str
    block_name: str | None = None
    status: ExecutionStatus
    input_data: Any = None
    output_data: Any = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    execution_time_ms: float | None = None
    retry_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")


class TimelineEventResponse(BaseSchema):
    """Schema for a timeline event."""

    sequence: int
    event: str
    event_type: str
    node_id: str | None = None
    block_type: str | None = None
    details: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime


class ExecutionResponse(BaseSchema):
    """Schema for a run tracking record."""

    id: UUID
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    mode: ExecutionMode
    input_data: Any = None
    output_data: Any = None
    error_message: str | None = None
    progress_percentage: int = Field(default=0, ge=0, le=100)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    execution_time_ms: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime


class ExecutionDetailResponse(ExecutionResponse):
    """Run record with its block executions and timeline."""

    block_executions: list[BlockExecutionResponse] = Field(default_factory=list)
    timeline: list[TimelineEventResponse] = Field(default_factory=list)


class ExecutionListResponse(BaseSchema):
    """Page of run records."""

    items: list[ExecutionResponse]
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)


class ExecutionStats(BaseSchema):
    """Aggregated run statistics."""

    workflow_id: str | None = None
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    success_rate: float = 0.0
    avg_execution_time_ms: float | None = None


class CancelExecutionResponse(BaseSchema):
    """Result of a cancellation request."""

    execution_id: str
    cancelled: bool = Field(..., description="Whether a running record was cancelled")
    job_status: JobStatus | None = Field(default=None)


# =============================================================================
# Block Catalog Schemas
# =============================================================================


class BlockMetadataResponse(BaseSchema):
    """Catalog entry of a registered block type."""

    type: str
    name: str
    description: str = ""
    category: BlockCategory
    version: str
    icon: str | None = None
    config_schema: dict[str, Any] | None = None
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    tags: list[str] = Field(default_factory=list)


class BlockTestRequest(BaseSchema):
    """Run a single block outside of a workflow."""

    config: dict[str, Any] = Field(default_factory=dict)
    input: Any = Field(default=None)
    variables: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)
    retry_policy: RetryPolicy | None = Field(default=None)


# =============================================================================
# Job Schemas
# =============================================================================


class JobResponse(BaseSchema):
    """Schema for an in-memory job."""

    id: str
    user_id: str
    type: str
    status: JobStatus
    progress: float = Field(..., ge=0, le=100)
    payload: dict[str, Any] = Field(default_factory=dict)
    timeline: list[dict[str, Any]] = Field(default_factory=list)
    result: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    summary: dict[str, Any] | None = Field(
        default=None,
        description="Workflow progress summary for workflow jobs",
    )


class JobStats(BaseSchema):
    """Counts of jobs per status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def active(self) -> int:
        """Jobs not yet terminal."""
        return self.pending + self.processing


__all__ = [
    "BlockExecutionResponse",
    "BlockMetadataResponse",
    "BlockTestRequest",
    "CancelExecutionResponse",
    "ExecuteInlineRequest",
    "ExecuteWorkflowRequest",
    "ExecuteWorkflowResponse",
    "ExecutionDetailResponse",
    "ExecutionListResponse",
    "ExecutionResponse",
    "ExecutionStats",
    "JobResponse",
    "JobStats",
    "NodeResultResponse",
    "TimelineEventResponse",
]
